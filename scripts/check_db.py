# scripts/check_db.py
# Checks connectivity to DATABASE_URL and, when configured, REDIS_URL.
import redis
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from marketplace.core.config import settings
from marketplace.db.session import build_engine


def main():
    url = settings.DATABASE_URL
    print('Trying to connect to:', url)
    engine = build_engine(url)
    try:
        with engine.connect() as conn:
            print('Connection OK, SELECT 1 ->', conn.execute(text("SELECT 1")).scalar())
    except SQLAlchemyError as e:
        print('Connection failed:', e)
    finally:
        engine.dispose()

    if settings.REDIS_URL:
        print('Trying to reach cache at:', settings.REDIS_URL)
        try:
            print('Cache OK, PING ->', redis.Redis.from_url(settings.REDIS_URL).ping())
        except redis.RedisError as e:
            print('Cache unreachable:', e)

if __name__ == '__main__':
    main()

import sys

from redis.asyncio import Redis
from redis.exceptions import AuthenticationError, TimeoutError

from backoffice.common.log import log
from backoffice.core.conf import settings


class RedisCli(Redis):
    """Redis client"""

    def __init__(self) -> None:
        """Configure the client from settings."""
        super().__init__(
            host=settings.REDIS_HOST,
            port=settings.REDIS_PORT,
            password=settings.REDIS_PASSWORD or None,
            db=settings.REDIS_DATABASE,
            socket_timeout=settings.REDIS_TIMEOUT,
            socket_connect_timeout=settings.REDIS_TIMEOUT,
            socket_keepalive=True,  # keep connections alive
            health_check_interval=30,
            decode_responses=True,  # str in, str out
        )

    async def open(self) -> None:
        """Ping once so startup fails fast on a bad connection."""
        try:
            await self.ping()
        except TimeoutError:
            log.error('❌ Redis connection timed out')
            sys.exit()
        except AuthenticationError:
            log.error('❌ Redis authentication failed')
            sys.exit()
        except Exception as e:
            log.error(f'❌ Redis connection error {e}')
            sys.exit()

    async def delete_prefix(self, prefix: str, exclude: str | list[str] | None = None, batch_size: int = 1000) -> None:
        """
        Delete every key under a prefix in batches

        :param prefix: key prefix
        :param exclude: keys to keep
        :param batch_size: keys per DELETE
        :return:
        """
        if isinstance(exclude, str):
            exclude_set = {exclude}
        elif isinstance(exclude, list):
            exclude_set = set(exclude)
        else:
            exclude_set = set()

        batch_keys = []
        async for key in self.scan_iter(match=f'{prefix}*'):
            if key not in exclude_set:
                batch_keys.append(key)
                if len(batch_keys) >= batch_size:
                    await self.delete(*batch_keys)
                    batch_keys.clear()

        if batch_keys:
            await self.delete(*batch_keys)


# Redis client singleton
redis_client: RedisCli = RedisCli()

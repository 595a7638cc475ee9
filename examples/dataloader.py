import asyncio
import random

from batchlift import Context
from batchlift.logging import setup_logging

USERS = {user_id: f"user-{user_id}" for user_id in range(100)}


async def load_users(user_ids: list[int], options: dict) -> tuple[list[str], dict]:
    """Fetch many users in one round trip, skipping ids already in the cache."""
    cache = options["cache"]
    missing = [user_id for user_id in set(user_ids) if user_id not in cache]
    await asyncio.sleep(delay=0.05)
    print(f"Round trip for {len(missing)} user(s), {len(user_ids)} requested")
    cache = {**cache, **{user_id: USERS[user_id] for user_id in missing}}
    return [cache[user_id] for user_id in user_ids], cache


async def resolve_friend(context: Context, user_id: int) -> str:
    """Resolve one user as a field resolver would, one id at a time."""
    await asyncio.sleep(delay=random.random() / 20)
    return await context.enqueue(task=user_id, bucket_id="users")


async def main() -> None:
    """Resolve 30 users through 10 ms time windows, flushing early at 10 queued ids."""
    config = {
        "buckets": {
            "users": {
                "triggers": {
                    "queue-size": {"threshold": 10},
                    "interval": {"interval": 10},
                }
            }
        }
    }
    async with Context.start(config, executor=load_users) as context:
        names = await asyncio.gather(
            *(resolve_friend(context=context, user_id=random.randrange(20)) for _ in range(30))
        )
    print(f"Resolved {len(names)} users")


if __name__ == "__main__":
    setup_logging(level="info")
    asyncio.run(main())

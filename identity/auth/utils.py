import asyncio

from passlib.context import CryptContext

context = CryptContext(schemes=["argon2"], deprecated="auto")


def hash_password(password: str) -> str:
    return context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return context.verify(plain, hashed)


# argon2 is deliberately slow; run it off the event loop.

async def hash_password_async(password: str) -> str:
    return await asyncio.to_thread(hash_password, password)


async def verify_password_async(plain: str, hashed: str) -> bool:
    return await asyncio.to_thread(verify_password, plain, hashed)

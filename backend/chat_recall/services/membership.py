"""Chat membership lookups shared by search and the embedding pipeline.

Functions:
    is_chat_member(session, chat_id, user_id): Whether the user belongs to the chat.
    member_chat_ids(session, user_id): Sorted ids of every chat the user belongs to.
    chat_member_ids(session, chat_id): User ids of a chat's members.
"""

from __future__ import annotations

from sqlalchemy import select
from sqlmodel.ext.asyncio.session import AsyncSession

from chat_recall.models import ChatMember


async def is_chat_member(session: AsyncSession, chat_id: str, user_id: str) -> bool:
    result = await session.exec(
        select(ChatMember.id).where(ChatMember.chat_id == chat_id, ChatMember.user_id == user_id)
    )
    return result.first() is not None


async def member_chat_ids(session: AsyncSession, user_id: str) -> list[str]:
    result = await session.exec(select(ChatMember.chat_id).where(ChatMember.user_id == user_id))
    return sorted(set(result.scalars().all()))


async def chat_member_ids(session: AsyncSession, chat_id: str) -> list[str]:
    result = await session.exec(select(ChatMember.user_id).where(ChatMember.chat_id == chat_id))
    return list(result.scalars().all())

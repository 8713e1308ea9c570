"""Row lookups shared by services."""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fortune_city.core.exceptions import (
    UserNotFoundError, MachineNotFoundError, MachineOwnershipError
)
from fortune_city.models.machine import Machine
from fortune_city.models.user import User


async def get_user_or_raise(
    db: AsyncSession,
    user_id: str,
    for_update: bool = False
) -> User:
    query = select(User).where(User.id == user_id)
    if for_update:
        query = query.with_for_update()
    user = (await db.execute(query)).scalar_one_or_none()
    if user is None:
        raise UserNotFoundError(user_id)
    return user


async def get_machine_or_raise(
    db: AsyncSession,
    machine_id: str,
    user_id: Optional[str] = None,
    for_update: bool = False
) -> Machine:
    """Load a machine; with user_id set the machine must belong to that user."""
    query = select(Machine).where(Machine.id == machine_id)
    if for_update:
        query = query.with_for_update()
    machine = (await db.execute(query)).scalar_one_or_none()
    if machine is None:
        raise MachineNotFoundError(machine_id)
    if user_id is not None and machine.user_id != user_id:
        raise MachineOwnershipError(user_id, machine_id)
    return machine

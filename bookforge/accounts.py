"""
User profile documents, reading lists and follows.

Display-name uniqueness is checked with a query before writing. It is not a
store constraint: two sign-ups racing for the same name can both win.
"""

import logging
from typing import List, Optional, Tuple

from google.cloud.firestore_v1 import ArrayRemove, ArrayUnion

from .auth import AuthContext
from .enums import BatchOperation
from .errors import DisplayNameTakenError, DocumentNotFoundError, SelfFollowError, store_errors
from .models import ANONYMOUS, UserProfile

logger = logging.getLogger(__name__)


async def is_display_name_taken(display_name: str, exclude_uid: Optional[str] = None) -> bool:
    with store_errors("check display name"):
        async for profile in UserProfile.find(
            filters=[UserProfile.display_name == display_name], limit=2
        ):
            if profile.id != exclude_uid:
                return True
    return False


async def search_users(prefix: str, limit: Optional[int] = None) -> List[UserProfile]:
    """Profiles whose display name starts with ``prefix`` (case-sensitive)."""
    prefix = (prefix or "").strip()
    if not prefix:
        return []
    with store_errors("search users"):
        return await UserProfile.find_all(
            filters=[
                UserProfile.display_name >= prefix,
                UserProfile.display_name <= prefix + "\uf8ff",
            ],
            order_by=UserProfile.display_name.asc(),
            limit=limit,
        )


async def ensure_user_profile(auth: AuthContext) -> Tuple[UserProfile, bool]:
    """
    Create ``users/{uid}`` on first sign-in, or backfill a placeholder name.

    Returns the profile and whether the auth display name was wanted but
    already taken (the caller shows a "Display Name Taken" notice).
    """
    wanted = auth.display_name if auth.display_name and auth.display_name != ANONYMOUS else None
    name_taken = False

    with store_errors("load user profile"):
        profile = await UserProfile.get(auth.uid)

    if profile is None:
        display_name = ANONYMOUS
        if wanted:
            if await is_display_name_taken(wanted):
                name_taken = True
            else:
                display_name = wanted
        profile = UserProfile(
            id=auth.uid,
            display_name=display_name,
            photo_url=auth.photo_url or "",
        )
        with store_errors("create user profile"):
            await profile.save()
        logger.info(f"User profile {auth.uid} created as {display_name!r}")
        return profile, name_taken

    if profile.display_name == ANONYMOUS and wanted:
        if await is_display_name_taken(wanted, exclude_uid=auth.uid):
            name_taken = True
        else:
            profile.display_name = wanted
            with store_errors("backfill display name"):
                await profile.update(include={"display_name"})
            logger.info(f"User profile {auth.uid} display name backfilled")
    return profile, name_taken


async def update_display_name(auth: AuthContext, display_name: str) -> UserProfile:
    if await is_display_name_taken(display_name, exclude_uid=auth.uid):
        raise DisplayNameTakenError(display_name)
    profile = UserProfile(id=auth.uid, display_name=display_name)
    with store_errors("update display name"):
        await profile.update(include={"display_name"})
    return profile


# --------------------------------------------------------------------------- #
# Reading list                                                                #
# --------------------------------------------------------------------------- #


async def add_to_reading_list(auth: AuthContext, book_id: str) -> None:
    with store_errors("add to reading list"):
        await UserProfile(id=auth.uid).update_fields(
            {"readingList": ArrayUnion([book_id])}
        )


async def remove_from_reading_list(auth: AuthContext, book_id: str) -> None:
    with store_errors("remove from reading list"):
        await UserProfile(id=auth.uid).update_fields(
            {"readingList": ArrayRemove([book_id])}
        )


async def toggle_reading_list(auth: AuthContext, book_id: str) -> bool:
    """Add or remove ``book_id``; returns True when the book is now listed."""
    with store_errors("load reading list"):
        profile = await UserProfile.get(auth.uid)
    if profile is None:
        raise DocumentNotFoundError(f"User profile {auth.uid} does not exist.")
    if book_id in profile.reading_list:
        await remove_from_reading_list(auth, book_id)
        return False
    await add_to_reading_list(auth, book_id)
    return True


# --------------------------------------------------------------------------- #
# Follows                                                                     #
# --------------------------------------------------------------------------- #


async def _write_follow(follower_id: str, followee_id: str, transform) -> None:
    if follower_id == followee_id:
        raise SelfFollowError("Users cannot follow themselves.")
    with store_errors("update follows"):
        await UserProfile.batch_write([
            (BatchOperation.UPDATE, UserProfile(id=follower_id), {"following": transform([followee_id])}),
            (BatchOperation.UPDATE, UserProfile(id=followee_id), {"followers": transform([follower_id])}),
        ])


async def follow_user(auth: AuthContext, followee_id: str) -> None:
    await _write_follow(auth.uid, followee_id, ArrayUnion)
    logger.info(f"{auth.uid} now follows {followee_id}")


async def unfollow_user(auth: AuthContext, followee_id: str) -> None:
    await _write_follow(auth.uid, followee_id, ArrayRemove)
    logger.info(f"{auth.uid} unfollowed {followee_id}")

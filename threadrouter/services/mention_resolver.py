"""
Mention Resolver

Maps a source-platform user token (ID or email) to a destination user ID.

Lookup order:
1. Exact mapping on (platform, workspace, source user ID, destination)
2. Case-insensitive email match in the same workspace scope: stored
   mappings first, then the destination's user directory
3. Unmapped: the caller renders the raw handle as plain text

Email matches are persisted as auto-matched with confidence 1.0; unmapped
tokens can be persisted as discovered-unmapped placeholders so an operator
can complete them later.
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Optional

from threadrouter.models.records import MappingType, UserMapping
from threadrouter.models.thread import DestinationUser
from threadrouter.services.store import Store
from threadrouter.utils.helpers import is_email

logger = logging.getLogger(__name__)


@dataclass
class MentionResolution:
    """Outcome of resolving one mention."""

    raw: str
    destination_user_id: Optional[str] = None
    confidence: float = 0.0
    mapping_type: Optional[MappingType] = None

    @property
    def resolved(self) -> bool:
        return self.destination_user_id is not None


class MentionResolver:
    """Workspace-scoped source -> destination user resolution."""

    def __init__(self, store: Store, persist_unmapped: bool = True):
        self.store = store
        self.persist_unmapped = persist_unmapped

    async def resolve(
        self,
        platform: str,
        workspace_id: str,
        token: str,
        *,
        destination_platform: str,
        email: Optional[str] = None,
        directory: Optional[Iterable[DestinationUser]] = None,
        email_lookup: Optional[Callable[[], Awaitable[Optional[str]]]] = None,
    ) -> MentionResolution:
        """
        Resolve a mentioned user.

        Args:
            platform: Source platform type
            workspace_id: Source workspace the token belongs to
            token: Raw source user ID or email
            destination_platform: Platform of the sink the mention is rendered in
            email: Email of the source user, when known
            directory: Destination users available for email matching
            email_lookup: Called for the source user's email when neither
                the token nor email is one and no exact mapping exists

        Returns:
            MentionResolution; destination_user_id is None when unmapped
        """
        existing = await self.store.find_user_mapping(
            platform, workspace_id, token, destination_platform
        )
        if existing and existing.destination_user_id and (
            existing.mapping_type != MappingType.DISCOVERED_UNMAPPED
        ):
            return MentionResolution(
                raw=token,
                destination_user_id=existing.destination_user_id,
                confidence=existing.confidence,
                mapping_type=existing.mapping_type,
            )

        candidate_email = email if is_email(email) else (token if is_email(token) else None)
        if candidate_email is None and email_lookup is not None:
            looked_up = await email_lookup()
            candidate_email = looked_up if is_email(looked_up) else None
        if candidate_email:
            match = await self._match_email(
                platform,
                workspace_id,
                token,
                candidate_email,
                destination_platform,
                directory,
            )
            if match is not None:
                return match

        logger.warning(
            f"Unmapped {platform} user {token} in workspace {workspace_id} "
            f"for {destination_platform}"
        )
        if self.persist_unmapped and existing is None:
            await self.store.persist_user_mapping(
                UserMapping(
                    source_platform=platform,
                    source_workspace_id=workspace_id,
                    source_user_id=token,
                    source_user_email=candidate_email,
                    destination_platform=destination_platform,
                    destination_user_id=None,
                    confidence=0.0,
                    mapping_type=MappingType.DISCOVERED_UNMAPPED,
                )
            )
        return MentionResolution(raw=token)

    async def _match_email(
        self,
        platform: str,
        workspace_id: str,
        token: str,
        email: str,
        destination_platform: str,
        directory: Optional[Iterable[DestinationUser]],
    ) -> Optional[MentionResolution]:
        target = email.strip().lower()
        destination_user_id = None

        stored = await self.store.find_user_mapping_by_email(
            platform, workspace_id, target, destination_platform
        )
        if stored is not None:
            destination_user_id = stored.destination_user_id
        else:
            for user in directory or []:
                if user.email and user.email.strip().lower() == target:
                    destination_user_id = user.id
                    break

        if destination_user_id is None:
            return None

        await self.store.persist_user_mapping(
            UserMapping(
                source_platform=platform,
                source_workspace_id=workspace_id,
                source_user_id=token,
                source_user_email=target,
                destination_platform=destination_platform,
                destination_user_id=destination_user_id,
                confidence=1.0,
                mapping_type=MappingType.AUTO_MATCHED,
            )
        )
        logger.info(f"Auto-matched {platform} user {token} by email to {destination_user_id}")

        return MentionResolution(
            raw=token,
            destination_user_id=destination_user_id,
            confidence=1.0,
            mapping_type=MappingType.AUTO_MATCHED,
        )

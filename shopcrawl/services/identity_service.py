"""Product identity and slug resolution.

A product's identity is the (platform, identity_key) pair: the platform's own
item id when the adapter found one, the normalized source URL otherwise.
Slugs are derived from the title and made globally unique with a
deterministic suffix.
"""

from dataclasses import dataclass
from itertools import count
from typing import Optional

import structlog
from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from shopcrawl.core.constants import SLUG_MAX_LENGTH, SourcePlatform
from shopcrawl.models.product import Product
from shopcrawl.scrapers.utils.normalizer import normalize_url
from shopcrawl.scrapers.utils.slug import hash_fragment, slugify, with_suffix

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ResolvedIdentity:
    platform: SourcePlatform
    identity_key: str
    slug_candidate: str


class IdentityResolver:
    """Decides whether a record is new and which slug it gets."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.logger = logger.bind(service="identity_resolver")

    def resolve_identity(self, record) -> ResolvedIdentity:
        """Identity of a RawRecord or NormalizedProduct.

        Both expose source_platform, source_item_id, source_url and title.
        """
        platform = SourcePlatform(record.source_platform)
        identity_key = (record.source_item_id or "").strip() or normalize_url(record.source_url)
        slug_candidate = slugify(record.title, SLUG_MAX_LENGTH, fallback=f"{platform.value}-item")
        return ResolvedIdentity(platform=platform, identity_key=identity_key, slug_candidate=slug_candidate)

    async def lookup_existing(self, identity: ResolvedIdentity) -> Optional[Product]:
        result = await self.db.execute(
            select(Product).where(and_(
                Product.source_platform == identity.platform.value,
                Product.identity_key == identity.identity_key,
            ))
        )
        return result.scalar_one_or_none()

    async def ensure_unique_slug(self, candidate: str, identity: ResolvedIdentity) -> str:
        """First free slug among candidate, candidate-<hash>, candidate-<hash>-2, ...

        A slug already held by the same identity counts as free.
        """
        if await self._slug_available(candidate, identity):
            return candidate

        hashed = with_suffix(candidate, hash_fragment(f"{identity.platform.value}:{identity.identity_key}"))
        if await self._slug_available(hashed, identity):
            self.logger.debug("slug_disambiguated", candidate=candidate, slug=hashed)
            return hashed

        for n in count(2):
            slug = with_suffix(hashed, str(n))
            if await self._slug_available(slug, identity):
                self.logger.debug("slug_disambiguated", candidate=candidate, slug=slug)
                return slug

    async def _slug_available(self, slug: str, identity: ResolvedIdentity) -> bool:
        result = await self.db.execute(
            select(Product.source_platform, Product.identity_key).where(Product.slug == slug)
        )
        holder = result.first()
        if holder is None:
            return True
        return holder.source_platform == identity.platform.value and holder.identity_key == identity.identity_key

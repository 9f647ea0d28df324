from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType

COLLECTION_SLUGS: Mapping[str, str] = MappingProxyType(
    {
        "0xbd3531da5cf5857e7cfaa92426877b022e612cf8": "pudgypenguins",
        "0xbc4ca0eda7647a8ab7c2061c2e118a18a936f13d": "boredapeyachtclub",
        "0xfd1b0b0dfa524e1fd42e7d51155a663c581bbd50": "y00ts",
        "0xed5af388653567af2f388e6224dc7c4b3241c544": "azuki",
        "0x8821bee2ba0df28761afff119d66390d594cd280": "degods",
        "0x49cf6f5d44e70224e2e23fdcdd2c053f30ada28b": "clonex",
        "0x60e4d786628fea6478f785a6d7e704777c86a7c6": "mutant-ape-yacht-club",
        "0x8a90cab2b38dba80c64b7734e58ee1db38b8992e": "doodles-official",
        "0x23581767a106ae21c074b2276d25e5c3e136a68b": "proof-moonbirds",
    }
)


class CollectionResolver:
    """Read-only collection address to DeepNFTValue slug lookup.

    The table is frozen at construction and shared by every enricher, so no
    locking is needed.
    """

    def __init__(self, extra: Mapping[str, str] | None = None) -> None:
        table = dict(COLLECTION_SLUGS)
        if extra:
            table.update({address.lower(): slug for address, slug in extra.items()})
        self._slugs: Mapping[str, str] = MappingProxyType(table)

    @property
    def slugs(self) -> Mapping[str, str]:
        return self._slugs

    def resolve(self, address: str) -> str | None:
        return self._slugs.get(address.strip().lower())

from typing import Iterable


def normalize_identity(identity: str) -> str:
    return identity.strip().lower()


class AllowList:
    def __init__(self, identities: Iterable[str]) -> None:
        self._identities = frozenset(
            normalize_identity(identity) for identity in identities if identity.strip()
        )

    def contains(self, identity: str) -> bool:
        return normalize_identity(identity) in self._identities

    def __len__(self) -> int:
        return len(self._identities)

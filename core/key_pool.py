"""单个 provider 的凭证池：有序凭证、当前激活索引与切换策略。"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Optional, Union

from core.errors import (
    CannotRemoveActive,
    CredentialNotFound,
    DuplicateCredential,
    IndexOutOfRange,
    PoolWouldBeEmpty,
)
from core.models import Credential, Quota, SwitchStrategy, mask_secret

LOGGER = logging.getLogger(__name__)

_BATCH_SPLIT = re.compile(r"[,\s]+")


@dataclass(slots=True)
class BatchAddResult:
    """批量导入结果，失败行带 1 起始的行号说明。"""

    added: List[Credential] = field(default_factory=list)
    failed: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> int:
        return len(self.added)


class KeyPool:
    """单个 provider 的有序凭证与当前激活项。

    凭证池本身不校验额度；探测结果由协调器通过 :meth:`record_quota` 与
    :meth:`mark_invalid` 写入。
    """

    def __init__(
        self,
        credentials: Iterable[Credential] = (),
        active_index: int = 0,
        strategy: Union[SwitchStrategy, str] = SwitchStrategy.MANUAL,
    ) -> None:
        self._credentials: List[Credential] = []
        for credential in credentials:
            if self._find_secret(credential.secret) is not None:
                raise DuplicateCredential(credential.masked_secret)
            self._credentials.append(credential)
        self._strategy = SwitchStrategy(strategy)
        self._active_index = 0
        if self._credentials:
            if not 0 <= active_index < len(self._credentials):
                raise IndexOutOfRange(active_index)
            self._active_index = active_index

    def __len__(self) -> int:
        return len(self._credentials)

    def __iter__(self) -> Iterator[Credential]:
        return iter(list(self._credentials))

    @property
    def credentials(self) -> List[Credential]:
        return list(self._credentials)

    @property
    def active_index(self) -> int:
        return self._active_index

    @property
    def active(self) -> Optional[Credential]:
        if not self._credentials:
            return None
        return self._credentials[self._active_index]

    @property
    def strategy(self) -> SwitchStrategy:
        return self._strategy

    def get(self, credential_id: str) -> Credential:
        return self._credentials[self.index_of(credential_id)]

    def index_of(self, credential_id: str) -> int:
        for index, credential in enumerate(self._credentials):
            if credential.id == credential_id:
                return index
        raise CredentialNotFound(credential_id)

    def _find_secret(self, secret: str) -> Optional[Credential]:
        for credential in self._credentials:
            if credential.secret == secret:
                return credential
        return None

    def add(self, secret: str, name: Optional[str] = None) -> Credential:
        """新增凭证；相同密钥（区分大小写）直接拒绝，与名称无关。"""

        secret = secret.strip()
        if not secret:
            raise ValueError("secret must not be empty")
        if self._find_secret(secret) is not None:
            raise DuplicateCredential(f"credential already present: {mask_secret(secret)}")
        credential = Credential(
            secret=secret,
            display_name=(name or "").strip() or f"Key {len(self._credentials) + 1}",
        )
        self._credentials.append(credential)
        LOGGER.info("Added credential %s (%s)", credential.display_name, credential.masked_secret)
        return credential

    def add_batch(self, text: str, prefix: Optional[str] = None) -> BatchAddResult:
        """按行批量导入：``secret`` 或 ``name,secret``。

        每行最后一个片段是密钥，其余部分作为显示名称；不合格的行记录错误后跳过。
        """

        result = BatchAddResult()
        lines = [line.strip() for line in text.splitlines()]
        for number, line in enumerate(lines, start=1):
            if not line:
                continue
            parts = [part for part in _BATCH_SPLIT.split(line) if part]
            secret = parts[-1]
            name = " ".join(parts[:-1]) or None
            if prefix and not secret.startswith(prefix):
                result.failed += 1
                result.errors.append(f"line {number}: secret must start with {prefix!r}")
                continue
            try:
                result.added.append(self.add(secret, name))
            except DuplicateCredential:
                result.failed += 1
                result.errors.append(f"line {number}: secret already present")
        LOGGER.info("Batch import: %s added, %s failed", result.success, result.failed)
        return result

    def remove(self, credential_id: str, auto_rotate: bool = True) -> Credential:
        """删除凭证。

        删除当前激活凭证时，自动让位给删除后占据同一位置的凭证（越界则取最后一个）；
        ``auto_rotate=False`` 时拒绝删除激活凭证。
        """

        index = self.index_of(credential_id)
        if len(self._credentials) == 1:
            raise PoolWouldBeEmpty(credential_id)
        if index == self._active_index and not auto_rotate:
            raise CannotRemoveActive(credential_id)
        removed = self._credentials.pop(index)
        if index < self._active_index:
            self._active_index -= 1
        elif index == self._active_index:
            self._active_index = min(index, len(self._credentials) - 1)
            self._credentials[self._active_index].last_used = time.time()
            LOGGER.info(
                "Removed active credential %s, successor is %s",
                removed.display_name,
                self._credentials[self._active_index].display_name,
            )
        return removed

    def set_active(self, index: int) -> Credential:
        """手动指定激活凭证，绕过策略。"""

        if not 0 <= index < len(self._credentials):
            raise IndexOutOfRange(index)
        self._active_index = index
        credential = self._credentials[index]
        credential.last_used = time.time()
        return credential

    def set_strategy(self, strategy: Union[SwitchStrategy, str]) -> None:
        self._strategy = SwitchStrategy(strategy)

    def record_quota(self, credential_id: str, quota: Quota) -> Credential:
        """一步写入额度并清除失效标记。"""

        credential = self.get(credential_id)
        credential.quota = quota
        credential.invalid = False
        return credential

    def mark_invalid(self, credential_id: str) -> Credential:
        credential = self.get(credential_id)
        credential.invalid = True
        return credential

    def to_dict(self) -> Dict[str, Any]:
        return {
            "credentials": [credential.to_dict() for credential in self._credentials],
            "active_index": self._active_index,
            "strategy": self._strategy.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KeyPool":
        return cls(
            credentials=[Credential.from_dict(raw) for raw in data.get("credentials", [])],
            active_index=data.get("active_index", 0),
            strategy=data.get("strategy", SwitchStrategy.MANUAL.value),
        )


__all__ = ["BatchAddResult", "KeyPool"]

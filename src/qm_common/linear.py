"""Base for linear ("hot potato") values.

A linear value is produced only by its issuing call, threaded by value
through each step and retired only by its matching finish call. It cannot
be constructed directly, copied, pickled, or reused after it is consumed.
"""

import logging
from typing import Any, TypeVar

from src.qm_common.errors import ProgressStateError

logger = logging.getLogger(__name__)

_L = TypeVar("_L", bound="LinearValue")


class LinearValue:
    _consumed: bool

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        raise TypeError(f"{type(self).__name__} is issued by its begin call, not constructed")

    @classmethod
    def _issue(cls: type[_L], **fields: Any) -> _L:
        obj = cls.__new__(cls)
        for name, value in fields.items():
            object.__setattr__(obj, name, value)
        object.__setattr__(obj, "_consumed", False)
        return obj

    @property
    def consumed(self) -> bool:
        return self._consumed

    def _ensure_live(self) -> None:
        if self._consumed:
            raise ProgressStateError(f"{type(self).__name__} already consumed")

    def _consume(self) -> None:
        self._ensure_live()
        object.__setattr__(self, "_consumed", True)

    def __copy__(self) -> "LinearValue":
        raise TypeError(f"{type(self).__name__} cannot be copied")

    def __deepcopy__(self, memo: dict[int, Any]) -> "LinearValue":
        raise TypeError(f"{type(self).__name__} cannot be copied")

    def __reduce_ex__(self, protocol: Any) -> Any:
        raise TypeError(f"{type(self).__name__} cannot be persisted")

    def __del__(self) -> None:
        if not getattr(self, "_consumed", True):
            logger.warning("%s dropped without being finished", type(self).__name__)

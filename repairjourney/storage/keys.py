from __future__ import annotations

from dataclasses import dataclass
import threading
import time
from typing import Callable
from uuid import uuid4


DURABLE_SCHEME = "durable-store://"
FILE_SCHEME = "file://"
ERROR_SCHEME = "error://"

SESSION_ROOT = "repair_sessions"
TRAINING_ROOT = "repair_training"
FOLDER_MARKER = ".folder"


@dataclass(frozen=True)
class ArtifactStamp:
    # Wall-clock millis plus a random nonce; the pair never repeats for a session.
    millis: int
    nonce: str

    @property
    def suffix(self) -> str:
        return f"{self.millis}_{self.nonce}"


class ArtifactClock:
    """Hands out strictly increasing millisecond stamps.

    Two calls inside the same millisecond get distinct, ordered values; the
    random nonce covers writers in other processes.
    """

    def __init__(self, time_source: Callable[[], float] | None = None) -> None:
        self._time_source = time_source or time.time
        self._last_millis = 0
        self._lock = threading.Lock()

    def next_millis(self) -> int:
        with self._lock:
            now = int(self._time_source() * 1000)
            millis = now if now > self._last_millis else self._last_millis + 1
            self._last_millis = millis
            return millis

    def stamp(self) -> ArtifactStamp:
        return ArtifactStamp(millis=self.next_millis(), nonce=uuid4().hex[:8])


def session_folder(session_id: int) -> str:
    return f"{SESSION_ROOT}/{session_id}"


def session_artifact_key(session_id: int, phase: str, stamp: ArtifactStamp) -> str:
    filename = f"repair_session_{session_id}_{stamp.suffix}.json"
    return f"{session_folder(session_id)}/{phase}/{filename}"


def interaction_artifact_key(session_id: int, interaction_id: int, interaction_type: str, stamp: ArtifactStamp) -> str:
    filename = f"interaction_{session_id}_{interaction_id}_{interaction_type}_{stamp.suffix}.json"
    return f"{session_folder(session_id)}/interactions/{filename}"


def training_dataset_key(stamp: ArtifactStamp) -> str:
    return f"{TRAINING_ROOT}/dataset/repair_training_dataset_{stamp.suffix}.json"


def filename_from_key(key: str) -> str:
    return key.rsplit("/", 1)[-1]


def durable_address(bucket: str, key: str) -> str:
    return f"{DURABLE_SCHEME}{bucket}/{key}"


def parse_durable_address(address: str) -> tuple[str, str]:
    # Split durable-store://bucket/key into (bucket, key).
    if not address.startswith(DURABLE_SCHEME):
        raise ValueError(f"Not a durable store address: {address}")
    bucket, _, key = address[len(DURABLE_SCHEME):].partition("/")
    if not bucket or not key:
        raise ValueError(f"Malformed durable store address: {address}")
    return bucket, key


def error_address(label: str, millis: int) -> str:
    return f"{ERROR_SCHEME}{label}-{millis}"


def is_error_address(address: str) -> bool:
    return address.startswith(ERROR_SCHEME)


def address_backend(address: str) -> str:
    if address.startswith(DURABLE_SCHEME):
        return "durable"
    if address.startswith(FILE_SCHEME):
        return "fallback"
    if address.startswith(ERROR_SCHEME):
        return "error"
    raise ValueError(f"Unknown artifact address scheme: {address}")

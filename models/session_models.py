"""Identity and state models for the bootstrap and analysis workflows."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional


class RetrievalState(str, enum.Enum):
	"""Gate for every operation that needs an established identity."""

	BOOTSTRAPPING = "bootstrapping"
	READY = "ready"
	ERROR = "error"


class AnalysisState(str, enum.Enum):
	"""Lifecycle of a single analysis request."""

	IDLE = "idle"
	SUBMITTING = "submitting"
	SUCCESS = "success"
	FAILED = "failed"


@dataclass(frozen=True)
class Credential:
	"""What the identity provider hands back after a successful sign-in."""

	uid: str
	anonymous: bool
	token: Optional[str] = None


@dataclass(frozen=True)
class Identity:
	"""Stable identity for the rest of the process lifetime."""

	uid: str
	anonymous: bool = False

	@classmethod
	def from_credential(cls, credential: Credential) -> "Identity":
		return cls(uid=credential.uid, anonymous=credential.anonymous)

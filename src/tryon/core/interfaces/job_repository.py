"""JobRepositoryPort: hexagonal port for persisting and querying try-on Jobs.

Every state-changing method is a compare-and-set: it checks the current
state and applies the change in one atomic step, returning None when the
precondition no longer holds. Callers treat None as "someone else got there
first" and back off.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from tryon.core.models.job import Job, JobStatus, JobTransition


class JobRepositoryPort(ABC):
	"""Port abstraction for Job persistence and status history."""

	@abstractmethod
	async def create(self, job: Job) -> Job:
		"""Persist a newly created Job and return stored instance."""
		raise NotImplementedError

	@abstractmethod
	async def get(self, job_id: str) -> Optional[Job]:
		"""Return Job or None if not found."""
		raise NotImplementedError

	@abstractmethod
	async def get_by_provider_job_id(self, provider_job_id: str) -> Optional[Job]:
		"""Return the Job correlated with a provider id, or None."""
		raise NotImplementedError

	@abstractmethod
	async def list(
		self,
		status: Optional[JobStatus] = None,
		owner_scope: Optional[str] = None,
	) -> Sequence[Job]:
		"""List jobs filtered by status / owner scope, oldest first."""
		raise NotImplementedError

	@abstractmethod
	async def mark_submitted(self, job_id: str, provider_job_id: str, webhook_url: Optional[str] = None) -> Optional[Job]:
		"""pending -> submitted, recording the provider id exactly once."""
		raise NotImplementedError

	@abstractmethod
	async def claim(self, job_id: str, token: str, ttl_seconds: float) -> Optional[Job]:
		"""Take the completion claim on a submitted job.

		Succeeds when no live claim exists or the live claim already carries
		`token`. Returns None when the job is terminal or claimed by another.
		"""
		raise NotImplementedError

	@abstractmethod
	async def release_claim(self, job_id: str, token: str) -> None:
		"""Drop the claim if it is still held by `token`."""
		raise NotImplementedError

	@abstractmethod
	async def transition(
		self,
		job_id: str,
		to_status: JobStatus,
		*,
		token: Optional[str] = None,
		result_ref: Optional[str] = None,
		origin_fallback_ref: Optional[str] = None,
		error: Optional[str] = None,
		reason: Optional[str] = None,
		claim_ttl: float = 0,
	) -> Optional[Job]:
		"""Apply a status change if the edge is allowed and no other live claim blocks it.

		Returns the updated Job, or None when the job is missing, the edge is
		not allowed from the current status, or a live claim held by a
		different token exists.
		"""
		raise NotImplementedError

	@abstractmethod
	async def history(self, job_id: str) -> List[JobTransition]:
		"""Applied transitions in order."""
		raise NotImplementedError

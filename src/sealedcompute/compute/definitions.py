"""
Computation Definition Registry.

A computation kind must be registered and activated on the substrate once
before any request of that kind is accepted.

State machine:
    UNINITIALIZED -> INITIALIZING (registration submitted)
                  -> ACTIVE (program uploaded, or finalize observed)

Two activation paths exist and are mutually exclusive per kind:
    upload_program=True   upload a precompiled program body directly
    upload_program=False  finalize against a body uploaded out-of-band
"""

import asyncio
import logging
from typing import Dict, Optional

from ..errors import DefinitionExistsError
from .models import DefinitionState, comp_def_offset
from .substrate import ExecutionSubstrate

logger = logging.getLogger(__name__)


class ComputationDefinitionRegistry:
    """
    Client-side view of definition activation.

    ensure_active() is idempotent and safe under concurrency: local callers
    serialize on a per-kind lock, and a registration that races another
    client is accepted when the substrate reports it already exists.
    """

    def __init__(self, substrate: ExecutionSubstrate):
        self._substrate = substrate
        self._states: Dict[str, DefinitionState] = {}
        self._modes: Dict[str, bool] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def state(self, kind: str) -> DefinitionState:
        return self._states.get(kind, DefinitionState.UNINITIALIZED)

    async def ensure_active(
        self,
        kind: str,
        upload_program: bool = False,
        program_body: Optional[bytes] = None,
    ) -> None:
        """
        Make sure ``kind`` is ACTIVE on the substrate.

        Args:
            kind: Computation name
            upload_program: Upload ``program_body`` instead of finalizing
                against an out-of-band upload
            program_body: Precompiled program, required when uploading

        Raises:
            ValueError: On a missing body or a conflicting activation path
        """
        if upload_program and not program_body:
            raise ValueError(f"upload_program=True requires a program body for {kind!r}")

        previous_mode = self._modes.get(kind)
        if previous_mode is not None and previous_mode != upload_program:
            raise ValueError(
                f"Definition {kind!r} was activated with "
                f"upload_program={previous_mode}; paths are mutually exclusive"
            )

        if self._states.get(kind) == DefinitionState.ACTIVE:
            return

        lock = self._locks.setdefault(kind, asyncio.Lock())
        async with lock:
            if self._states.get(kind) == DefinitionState.ACTIVE:
                return
            await self._activate(kind, upload_program, program_body)

    async def _activate(
        self,
        kind: str,
        upload_program: bool,
        program_body: Optional[bytes],
    ) -> None:
        offset = comp_def_offset(kind)
        remote = await self._substrate.get_definition_state(offset)
        if remote == DefinitionState.ACTIVE:
            self._mark_active(kind, upload_program, "already active on substrate")
            return

        self._states[kind] = DefinitionState.INITIALIZING
        try:
            if remote == DefinitionState.UNINITIALIZED:
                try:
                    await self._substrate.init_definition(offset, kind)
                except DefinitionExistsError:
                    logger.info(
                        f"Definition {kind} already registered by another client",
                        extra={"kind": kind, "offset": offset},
                    )

            if upload_program:
                await self._substrate.upload_program(offset, program_body)
            else:
                await self._substrate.finalize_definition(offset)
        except BaseException:
            self._states[kind] = DefinitionState.UNINITIALIZED
            raise

        self._mark_active(kind, upload_program, "upload" if upload_program else "finalize")

    def _mark_active(self, kind: str, upload_program: bool, via: str) -> None:
        self._states[kind] = DefinitionState.ACTIVE
        self._modes[kind] = upload_program
        logger.info(
            f"Computation definition {kind} active ({via})",
            extra={"kind": kind, "offset": comp_def_offset(kind)},
        )

"""
Instruction batch assembler.

Instructions keep the order they were added in. A proof consumed by an
instruction is placed directly after it (in slot order), its absolute
position recorded on the ProofLocation, and the consumer's slot receives the
relative offset the ledger resolves.
"""

import json
import logging
from dataclasses import dataclass
from typing import List, Tuple

from confidential_balance.errors import BundleTooLarge
from confidential_balance.instructions import Instruction

logger = logging.getLogger(__name__)

DEFAULT_MAX_BUNDLE_BYTES = 65536


def canonical_json(obj) -> bytes:
    return json.dumps(obj, sort_keys=True, separators=(",", ":")).encode()


@dataclass(frozen=True)
class Bundle:
    instructions: Tuple[dict, ...]
    checkpoint: str
    required_signers: Tuple[str, ...]

    @property
    def message(self) -> bytes:
        """Bytes every signer signs."""
        return canonical_json({"checkpoint": self.checkpoint, "instructions": list(self.instructions)})

    @property
    def size(self) -> int:
        return len(self.message)

    def wire_instructions(self) -> List[dict]:
        return [dict(ix) for ix in self.instructions]

    def kinds(self) -> List[str]:
        return [ix["kind"] for ix in self.instructions]


class BundleAssembler:
    def __init__(self, max_bundle_bytes: int = DEFAULT_MAX_BUNDLE_BYTES):
        self.max_bundle_bytes = max_bundle_bytes
        self.entries: List[Instruction] = []

    def add(self, *instructions: Instruction) -> "BundleAssembler":
        for instruction in instructions:
            self.entries.append(instruction)
            for location in instruction.proofs.values():
                location.bundle_position = len(self.entries)
                self.entries.append(location.instruction())
        return self

    def __len__(self):
        return len(self.entries)

    def resolve(self) -> List[dict]:
        wire = []
        for index, instruction in enumerate(self.entries):
            item = instruction.to_wire()
            for slot, location in instruction.proofs.items():
                if location.bundle_position is None:
                    raise ValueError("proof for {} was never placed".format(slot))
                item[slot] = location.bundle_position - index
            wire.append(item)
        return wire

    def assemble(self, checkpoint: str) -> Bundle:
        if not self.entries:
            raise ValueError("bundle has no instructions")
        signers = []
        for instruction in self.entries:
            if instruction.authority and instruction.authority not in signers:
                signers.append(instruction.authority)
        bundle = Bundle(instructions=tuple(self.resolve()), checkpoint=checkpoint, required_signers=tuple(signers))
        if bundle.size > self.max_bundle_bytes:
            raise BundleTooLarge(
                "bundle is {} bytes, limit {}; split unrelated operations".format(bundle.size, self.max_bundle_bytes)
            )
        logger.debug("Assembled bundle %s (%d bytes)", bundle.kinds(), bundle.size)
        return bundle

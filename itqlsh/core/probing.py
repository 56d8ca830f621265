"""
Multi-Probe Sequence Generation for ITQ-LSH
===========================================

Given a query's bit vector and its real-valued signature, the bits with the
smallest signature magnitude are the ones most likely to have been flipped
by quantization noise. ``ProbeSequence`` enumerates alternative bucket codes
obtained by flipping sets of bits, in increasing order of the summed
per-bit loss of the flipped set.

Enumeration:
------------
Bits are sorted by loss, and a flip set is a sorted tuple of positions into
that order. Starting from {0}, every popped set A with largest element m
spawns at most two successors:

- shift(A):  A with m replaced by m + 1
- expand(A): A with m + 1 added

Both successors have a loss no smaller than A, and every non-empty subset is
reached from exactly one parent, so a min-heap over these sets yields all
2^n - 1 alternatives once each in non-decreasing loss order.
"""

import heapq
import numpy as np
from typing import List, Optional, Tuple

from itqlsh.core.interfaces import ProbeGenerator


class ProbeSequence(ProbeGenerator):
    """
    Loss-ordered generator of alternative bucket codes for one query.

    Attributes:
        code: Packed code of the query itself (never yielded)
        n_bits: Code length
        n_popped: Number of alternatives yielded so far

    Example:
        >>> seq = ProbeSequence(bits, signature)
        >>> first_alternative = seq.pop()
    """

    def __init__(
        self,
        bits: np.ndarray,
        signature: np.ndarray,
        bit_losses: Optional[np.ndarray] = None
    ):
        """
        Initialize probe sequence.

        Args:
            bits: Query bit vector of shape (n_bits,), most significant bit first
            signature: Query signature of shape (n_bits,)
            bit_losses: Per-bit flip losses overriding ``|signature|``
                (e.g. calibrated magnitudes)
        """
        bits = np.asarray(bits, dtype=bool)
        signature = np.asarray(signature, dtype=np.float64)

        if bits.ndim != 1 or bits.shape != signature.shape:
            raise ValueError(
                f"Bits {bits.shape} and signature {signature.shape} must be "
                "1-D arrays of equal length"
            )

        if bit_losses is None:
            losses = np.abs(signature)
        else:
            losses = np.asarray(bit_losses, dtype=np.float64)
            if losses.shape != bits.shape:
                raise ValueError(
                    f"Bit losses {losses.shape} do not match bits {bits.shape}"
                )

        self.n_bits = bits.shape[0]
        self.code = bits_to_code(bits)
        self.n_popped = 0

        # Stable, so equal-loss bits keep their positional order
        self._order = np.argsort(losses, kind='stable')
        self._sorted_losses = losses[self._order]
        self._masks = [
            1 << (self.n_bits - 1 - int(position)) for position in self._order
        ]

        self._heap: List[Tuple[float, Tuple[int, ...]]] = []
        if self.n_bits > 0:
            self._heap.append((float(self._sorted_losses[0]), (0,)))

    def pop(self) -> int:
        """
        Return the next alternative code.

        Raises:
            StopIteration: When all 2^n_bits - 1 alternatives were yielded
        """
        if not self._heap:
            raise StopIteration

        loss, flips = heapq.heappop(self._heap)
        last = flips[-1]

        if last + 1 < self.n_bits:
            shifted = flips[:-1] + (last + 1,)
            expanded = flips + (last + 1,)
            heapq.heappush(self._heap, (self._flip_loss(shifted), shifted))
            heapq.heappush(self._heap, (self._flip_loss(expanded), expanded))

        mask = 0
        for index in flips:
            mask |= self._masks[index]

        self.n_popped += 1
        return self.code ^ mask

    def _flip_loss(self, flips: Tuple[int, ...]) -> float:
        return float(self._sorted_losses[list(flips)].sum())

    @property
    def remaining(self) -> int:
        """Number of alternatives not yet yielded."""
        return (1 << self.n_bits) - 1 - self.n_popped


def bits_to_code(bits: np.ndarray) -> int:
    """Pack a bit vector most-significant-bit first into an int."""
    code = 0
    for bit in bits:
        code = code * 2 + int(bool(bit))
    return code


def code_to_bits(code: int, n_bits: int) -> np.ndarray:
    """Unpack an int into an ``n_bits`` bit vector, most significant bit first."""
    return np.array(
        [(code >> (n_bits - 1 - i)) & 1 for i in range(n_bits)],
        dtype=bool
    )

"""
Errors raised by the pool.

Every batch-level error is all-or-nothing: when one of these escapes
`ShieldedPool.transact` or `ShieldedPool.generate_deposit` the pool state is
exactly what it was before the call.
"""


class ShieldedPoolError(Exception):
    """Base class, `request_index` points at the offending entry of the batch."""

    request_index: int | None = None

    def _at(self) -> str:
        if self.request_index is None:
            return ""
        return f" (request {self.request_index})"


class MalformedRequest(ShieldedPoolError):
    def __init__(self, reason: str, request_index: int | None = None):
        super().__init__(reason, request_index)
        self.reason = reason
        self.request_index = request_index

    def __str__(self):
        return f"Malformed request: {self.reason}{self._at()}"


class ProofInvalid(ShieldedPoolError):
    def __init__(self, request_index: int):
        super().__init__(request_index)
        self.request_index = request_index

    def __str__(self):
        return f"Invalid proof{self._at()}"


class ProofVerificationError(ShieldedPoolError):
    """The verifier itself failed (timeout, crashed process) rather than rejecting the proof"""

    def __init__(self, request_index: int):
        super().__init__(request_index)
        self.request_index = request_index

    def __str__(self):
        return f"Proof verification failed to complete{self._at()}"


class StaleRoot(ShieldedPoolError):
    def __init__(self, tree_number: int, merkle_root: int, request_index: int):
        super().__init__(tree_number, merkle_root, request_index)
        self.tree_number = tree_number
        self.merkle_root = merkle_root
        self.request_index = request_index

    def __str__(self):
        return (
            f"Merkle root {self.merkle_root:#x} of tree {self.tree_number} "
            f"is not the current root{self._at()}"
        )


class NullifierConflict(ShieldedPoolError):
    def __init__(
        self,
        nullifier: int,
        duplicate_in_batch: bool,
        request_index: int | None = None,
    ):
        super().__init__(nullifier, duplicate_in_batch, request_index)
        self.nullifier = nullifier
        self.duplicate_in_batch = duplicate_in_batch
        self.request_index = request_index

    def __str__(self):
        if self.duplicate_in_batch:
            return f"Nullifier {self.nullifier:#x} appears twice in the batch{self._at()}"
        return f"Nullifier {self.nullifier:#x} has already been spent{self._at()}"


class TokenTransferFailed(ShieldedPoolError):
    def __init__(self, token, address: str, amount: int, request_index: int | None):
        super().__init__(token, address, amount, request_index)
        self.token = token
        self.address = address
        self.amount = amount
        self.request_index = request_index

    def __str__(self):
        return (
            f"Transfer of {self.amount} {self.token} involving {self.address} "
            f"failed{self._at()}"
        )


class FeeConfigUnauthorized(ShieldedPoolError):
    def __init__(self, caller: str):
        super().__init__(caller)
        self.caller = caller

    def __str__(self):
        return f"{self.caller} is not allowed to change the pool configuration"

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable

from snapshot import TransactionRecord


@dataclass(frozen=True)
class ReimbursementMap:
    """Net amounts of a transaction set after linked reimbursements.

    ``effective`` holds the signed net amount per transaction id. A
    reimbursing income nets to 0 because its money already reduced the
    expense it is linked to.
    """

    effective: dict[int, int] = field(default_factory=dict)
    reimbursed: dict[int, int] = field(default_factory=dict)

    def effective_amount(self, txn: TransactionRecord) -> int:
        return self.effective.get(txn.id, txn.amount_cents)

    def spend(self, txn: TransactionRecord) -> int:
        return abs(self.effective_amount(txn))

    def reimbursed_amount(self, txn: TransactionRecord) -> int:
        return self.reimbursed.get(txn.id, 0)


def _net(amount_cents: int, reimbursed_cents: int) -> int:
    if amount_cents < 0:
        return min(0, amount_cents + reimbursed_cents)
    return max(0, amount_cents - reimbursed_cents)


def build_reimbursement_map(
    transactions: Iterable[TransactionRecord],
) -> ReimbursementMap:
    by_id = {txn.id: txn for txn in transactions}
    reimbursed: dict[int, int] = defaultdict(int)
    reimbursing: set[int] = set()
    for txn in by_id.values():
        target = txn.linked_expense_id
        if target is None or target == txn.id or target not in by_id:
            continue
        reimbursing.add(txn.id)
        if not txn.is_hidden:
            reimbursed[target] += abs(txn.amount_cents)

    effective: dict[int, int] = {}
    for txn_id, txn in by_id.items():
        if txn_id in reimbursing:
            effective[txn_id] = 0
        elif txn_id in reimbursed:
            effective[txn_id] = _net(txn.amount_cents, reimbursed[txn_id])
        else:
            effective[txn_id] = txn.amount_cents
    return ReimbursementMap(effective=effective, reimbursed=dict(reimbursed))

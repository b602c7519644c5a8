"""
Ledger Query Module

Read side of the append-only ledger. Entries and transfers are written only
by the transfer engine and never updated, so everything here is a plain
lookup against committed rows.
"""

from typing import List

from .records import Entry, Transfer
from .storage import StorageInterface, DEFAULT_PAGE_SIZE


class Ledger:
    """Lookups over entries and transfers"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage

    def get_entry(self, entry_id: int) -> Entry:
        return self.storage.get_entry(entry_id)

    def list_entries(self, account_id: int, limit: int = DEFAULT_PAGE_SIZE,
                     offset: int = 0) -> List[Entry]:
        return self.storage.list_entries(account_id, limit=limit, offset=offset)

    def get_transfer(self, transfer_id: int) -> Transfer:
        return self.storage.get_transfer(transfer_id)

    def list_transfers(self, account_id: int, limit: int = DEFAULT_PAGE_SIZE,
                       offset: int = 0) -> List[Transfer]:
        """Transfers where the account is sender or receiver"""
        return self.storage.list_transfers(account_id, limit=limit, offset=offset)

    def entries_total(self, account_id: int) -> int:
        """
        Net amount moved in or out of an account by transfers.

        Pages through the history inside one unit of work. Under read
        committed isolation an entry committed while paging may or may not
        be counted, so the total is exact only when the account is quiet.
        """
        total = 0
        offset = 0
        with self.storage.atomic() as q:
            while True:
                page = q.list_entries(account_id, limit=DEFAULT_PAGE_SIZE, offset=offset)
                total += sum(entry.amount for entry in page)
                if len(page) < DEFAULT_PAGE_SIZE:
                    return total
                offset += DEFAULT_PAGE_SIZE

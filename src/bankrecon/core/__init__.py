"""
Core module - Foundation components for bankrecon.

Provides:
- DatabaseManager: SQLCipher encrypted database management
- transaction: atomic write context manager
- Account directory: users, banks and bank accounts
- AuditLogger / ImportLogger: audit trail and import run history
- ImportPreferences: data-driven configuration
- Security: user context management, identifier masking
"""

from bankrecon.core.database import DatabaseManager, transaction
from bankrecon.core.audit import AuditLogger, ImportLogger, ImportLogEntry
from bankrecon.core.directory import (
    Bank,
    StoredAccount,
    create_bank,
    get_bank,
    list_banks,
    create_account,
    get_account,
    list_accounts,
    find_by_identifier,
    update_account_balance,
)
from bankrecon.core.preferences import ImportPreferences, DEFAULT_PREFERENCES
from bankrecon.core.security import (
    UserContext,
    require_user_context,
    mask_iban,
    mask_account_number,
)
from bankrecon.core.exceptions import (
    BankReconError,
    DatabaseError,
    ParseError,
    UnsupportedFormatError,
    CommitError,
    AccountNotFoundError,
    ValidationError,
    UserContextError,
)

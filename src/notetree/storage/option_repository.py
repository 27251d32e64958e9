"""Key-value option storage."""
import logging
from typing import Dict, Optional

from sqlalchemy import select, update

from notetree.config import HISTORY_SNAPSHOT_INTERVAL_OPTION, config
from notetree.exceptions import ConfigurationError, ErrorCode
from notetree.models.db_models import options_table
from notetree.storage.gateway import SqlGateway, TransactionContext
from notetree.utils import utc_now

logger = logging.getLogger(__name__)


def default_options() -> Dict[str, str]:
    """Options seeded into a fresh database, taken from the global config."""
    return {
        HISTORY_SNAPSHOT_INTERVAL_OPTION: str(config.history_snapshot_interval),
    }


class OptionRepository:
    """Repository for named string options stored in the options table."""

    def __init__(self, gateway: SqlGateway):
        self.gateway = gateway

    def _get(self, tx: TransactionContext, name: str) -> Optional[Dict]:
        return self.gateway.get_single_result(
            tx, select(options_table).where(options_table.c.opt_name == name)
        )

    def get_option(self, name: str) -> str:
        """Get an option value.

        Raises:
            ConfigurationError: If the option has never been set.
        """
        with self.gateway.transaction() as tx:
            row = self._get(tx, name)
        if row is None:
            raise ConfigurationError(
                f"Option '{name}' is not defined",
                config_key=name,
                code=ErrorCode.CONFIG_MISSING,
            )
        return row["opt_value"]

    def get_option_int(self, name: str) -> int:
        """Get an option parsed as an integer.

        Raises:
            ConfigurationError: If the option is missing or not an integer.
        """
        value = self.get_option(name)
        try:
            return int(value)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(
                f"Option '{name}' is not an integer",
                config_key=name,
                value=value,
                code=ErrorCode.CONFIG_INVALID,
            ) from e

    def set_option(self, name: str, value: str) -> None:
        """Create or overwrite an option."""
        with self.gateway.transaction() as tx:
            if self._get(tx, name) is None:
                self.gateway.insert(tx, options_table, {
                    "opt_name": name,
                    "opt_value": value,
                    "date_modified": utc_now(),
                })
            else:
                self.gateway.execute(
                    tx,
                    update(options_table)
                    .where(options_table.c.opt_name == name)
                    .values(opt_value=value, date_modified=utc_now()),
                )
        logger.info(f"Option {name} set to {value!r}")

    def init_default_options(self) -> int:
        """Insert default options that are missing. Returns how many were added."""
        added = 0
        with self.gateway.transaction() as tx:
            for name, value in default_options().items():
                if self._get(tx, name) is None:
                    self.gateway.insert(tx, options_table, {
                        "opt_name": name,
                        "opt_value": value,
                        "date_modified": utc_now(),
                    })
                    added += 1
        if added:
            logger.info(f"Seeded {added} default options")
        return added

"""
Pool Definition Loader and Validator
====================================

This module parses, validates and hydrates lending pool definitions from
JSON. The loader performs:

1. **Syntactic Validation**: JSON Schema compliance (the bundled
   ``schemas/pool_schema.json`` unless another schema is given).
2. **Hydration**: Convert raw JSON into the typed pydantic configuration
   models.
3. **Semantic Validation**: Cross-field consistency (unique cover names,
   initial balances referring to configured covers, policy parameters).

The output is an immutable :class:`PoolDefinition` from which any number of
independent pools can be built.

Example
-------
>>> from lendpool_platform.engine.loader import PoolLoader
>>> loader = PoolLoader()
>>> definition = loader.load_from_json(pool_json)
>>> pool = definition.create_pool(credit_source)
>>> print(f"Loaded pool: {definition.pool_id}")

See Also
--------
pool_config.PoolConfig : The hydrated configuration.
pool.LendingPool : Built by :meth:`PoolDefinition.create_pool`.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from jsonschema import ValidationError as JsonSchemaValidationError
from jsonschema import validate
from pydantic import ValidationError

from ..config import get_settings
from .audit_trail import AuditTrail
from .credit import CreditPnLSource
from .pool import LendingPool
from .pool_config import FeeStructure, FirstLossCoverConfig, LPConfig, PoolConfig, PoolSettings, TranchesPolicyType

logger = logging.getLogger("LENDPOOL.Loader")

DEFAULT_SCHEMA_PATH = Path(__file__).resolve().parents[1] / "schemas" / "pool_schema.json"


# --- CUSTOM EXCEPTIONS ---
class PoolLoadError(Exception):
    """
    Base exception for pool loading issues.

    All loader-specific exceptions inherit from this class, allowing callers
    to catch every loading error with a single handler.
    """

    pass


class SchemaViolationError(PoolLoadError):
    """
    Raised when the JSON structure or a field value is invalid.

    Covers both JSON Schema failures and pydantic field constraint failures
    during hydration.
    """

    pass


class LogicIntegrityError(PoolLoadError):
    """
    Raised when a definition is well-formed but inconsistent, such as two
    cover layers sharing a name.
    """

    pass


# --- DOMAIN OBJECT ---
@dataclass(frozen=True)
class PoolDefinition:
    """
    Validated pool definition.

    Attributes
    ----------
    meta : dict
        Identification metadata (``pool_id``, ``name``, ``version``).
    config : PoolConfig
        Hydrated configuration.
    initial_cover_assets : dict
        Cover name to the balance the layer starts with.
    """

    meta: Dict[str, Any]
    config: PoolConfig
    initial_cover_assets: Dict[str, int] = field(default_factory=dict)

    @property
    def pool_id(self) -> str:
        return self.config.pool_id

    def create_pool(
        self,
        credit_source: CreditPnLSource,
        audit_trail: Optional[AuditTrail] = None,
    ) -> LendingPool:
        """
        Build a fresh pool from this definition and fund its cover layers.

        Parameters
        ----------
        credit_source : CreditPnLSource
            Collaborator reporting P/L at each settlement.
        audit_trail : AuditTrail, optional
            Settlement trace collector.
        """
        pool = LendingPool(self.config, credit_source, audit_trail)
        names = [c.name for c in self.config.first_loss_covers]
        for name, amount in self.initial_cover_assets.items():
            if amount:
                pool.add_cover_assets(names.index(name), amount)
        return pool


# --- THE LOADER ---
class PoolLoader:
    """
    Load a pool JSON structure, validate it, and hydrate the configuration.

    Parameters
    ----------
    schema_path : str or Path, optional
        JSON Schema used for syntactic validation. Defaults to the bundled
        pool schema.

    Example
    -------
    >>> loader = PoolLoader()
    >>> definition = loader.load_from_file("pools/example_pool.json")
    """

    def __init__(self, schema_path: Optional[Any] = None) -> None:
        self.schema: Dict[str, Any] = self._load_schema(schema_path or DEFAULT_SCHEMA_PATH)

    def _load_schema(self, path: Any) -> Dict[str, Any]:
        try:
            with open(path, "r") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError):
            logger.error(f"Failed to load schema file: {path}")
            raise

    def load_from_file(self, path: Any) -> PoolDefinition:
        """Read ``path`` as JSON and load it with :meth:`load_from_json`."""
        with open(path, "r") as f:
            return self.load_from_json(json.load(f))

    def load_from_json(self, json_data: Dict[str, Any]) -> PoolDefinition:
        """
        Parse and validate a pool JSON structure into a PoolDefinition.

        Parameters
        ----------
        json_data : dict
            Raw pool JSON containing ``meta``, ``lp_config`` and optionally
            ``fees``, ``first_loss_covers``, ``settings`` and
            ``initial_cover_assets``.

        Returns
        -------
        PoolDefinition
            Validated, immutable definition.

        Raises
        ------
        SchemaViolationError
            If the structure or a field value is invalid.
        LogicIntegrityError
            If the definition is internally inconsistent.
        """
        logger.info(f"Loading pool: {json_data.get('meta', {}).get('pool_id', 'Unknown')}")

        # 1. Syntactic Validation
        self._validate_syntax(json_data)

        # 2. Hydration
        definition = self._hydrate_objects(json_data)

        # 3. Semantic Validation
        self._validate_semantics(definition)

        logger.info("Pool loaded and validated successfully.")
        return definition

    def _validate_syntax(self, data: Dict[str, Any]) -> None:
        try:
            validate(instance=data, schema=self.schema)
        except JsonSchemaValidationError as e:
            logger.error(f"Schema Validation Failed at {list(e.path)}: {e.message}")
            raise SchemaViolationError(f"Invalid JSON Structure: {e.message}")

    def _hydrate_objects(self, data: Dict[str, Any]) -> PoolDefinition:
        # Fields the definition leaves out come from the LENDPOOL_DEFAULT_* settings
        defaults = get_settings()
        lp_data = {
            "max_senior_junior_ratio": defaults.default_max_senior_junior_ratio,
            "flex_call_window_epochs": defaults.default_flex_call_window_epochs,
            **data.get("lp_config", {}),
        }
        settings_data = {
            "epoch_period_seconds": defaults.default_epoch_period_seconds,
            **data.get("settings", {}),
        }
        try:
            config = PoolConfig(
                pool_id=data["meta"]["pool_id"],
                lp_config=LPConfig(**lp_data),
                fees=FeeStructure(**data.get("fees", {})),
                first_loss_covers=[
                    FirstLossCoverConfig(**c) for c in data.get("first_loss_covers", [])
                ],
                settings=PoolSettings(**settings_data),
            )
        except KeyError as e:
            logger.error(f"Missing required field during hydration: {e}")
            raise SchemaViolationError(f"Missing required field: {e}")
        except ValidationError as e:
            logger.error(f"Field validation failed during hydration: {e}")
            raise SchemaViolationError(f"Invalid field value: {e}")

        return PoolDefinition(
            meta=dict(data["meta"]),
            config=config,
            initial_cover_assets=dict(data.get("initial_cover_assets", {})),
        )

    def _validate_semantics(self, definition: PoolDefinition) -> None:
        errors: List[str] = []
        config = definition.config

        # 1. Cover names must be unique
        seen: Set[str] = set()
        for cover in config.first_loss_covers:
            if cover.name in seen:
                errors.append(f"Duplicate first-loss cover name '{cover.name}'")
            seen.add(cover.name)

        # 2. Initial balances must refer to configured covers
        for name in definition.initial_cover_assets:
            if name not in seen:
                errors.append(f"initial_cover_assets references unknown cover '{name}'")

        # 3. Policy parameters
        lp = config.lp_config
        if lp.tranches_policy is TranchesPolicyType.FIXED_SENIOR_YIELD and lp.risk_adjustment_bps:
            logger.warning("risk_adjustment_bps is ignored under the fixed senior yield policy")
        if lp.tranches_policy is TranchesPolicyType.RISK_ADJUSTED and lp.fixed_senior_yield_bps:
            logger.warning("fixed_senior_yield_bps is ignored under the risk adjusted policy")
        if lp.max_senior_junior_ratio == 0:
            logger.warning("max_senior_junior_ratio is 0; the pool will not accept senior deposits")

        if errors:
            error_msg = "\n".join(errors)
            logger.error(f"Semantic Validation Failed:\n{error_msg}")
            raise LogicIntegrityError(f"Pool Logic Invalid:\n{error_msg}")

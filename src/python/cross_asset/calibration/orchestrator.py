"""
Cross-asset model builder.

Builds the joint model from its configuration and runs the calibration
cascade:

    1. IR      each currency's LGM builder has calibrated itself against
               its swaption basket; its error is collected
    2. FX      FX option baskets priced in the joint model on the
               fx_calibration curves
    3. EQ      equity option baskets on the eq_calibration curves
    4. INF     CPI cap/floor baskets on the final_model curves, fitting
               volatility, reversion or both
    5. final   the model is bound to the final_model curves and refreshed

Every stage works on the one joint model, so cross-factor correlations
are present in single-factor calibrations. Each stage passes its market
configuration to its pricing formulas explicitly.

The builder is lazy. Results are computed at construction; every public
accessor first checks whether any sub-builder's market inputs or any
correlation quote changed, and only then rebuilds and recalibrates. The
model handle is relinked only once a rebuild has been fully calibrated;
a failed rebuild leaves it on the previous model and the state STALE.

State machine:
    UNINITIALIZED -> BUILT -> CALIBRATED -> STALE -> BUILT -> ...

Example:
    >>> builder = CrossAssetModelBuilder(market, config)
    >>> model = builder.model()
    >>> builder.swaption_calibration_errors()
    [3.1e-11, 2.4e-11]
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Dict, List, Optional

from ..config import CalibrationType, ContextConfig, CrossAssetModelConfig
from ..exceptions import CalibrationToleranceError, CrossAssetError
from ..market.market import Market
from ..market.quotes import MarketObserver
from ..models.calibrator import CalibrationResult, EndCriteria
from ..models.correlation import CorrelationMatrixBuilder
from ..models.crossassetmodel import CrossAssetModel, ModelHandle
from ..models.parametrization import AssetType
from ..monitoring.logging import BoundLogger
from ..pricing.engines import (
    AnalyticCcLgmFxOptionFormula,
    AnalyticDkCpiCapFloorFormula,
    AnalyticXAssetEquityOptionFormula,
)
from .builders import (
    EqBsBuilder,
    FxBsBuilder,
    InfDkBuilder,
    LgmBuilder,
    SubBuilder,
    validate_cross_references,
)

if TYPE_CHECKING:
    import pandas as pd

logger = logging.getLogger(__name__)


class BuilderState(Enum):
    """Lifecycle of the model builder."""

    UNINITIALIZED = "uninitialized"
    BUILT = "built"
    CALIBRATED = "calibrated"
    STALE = "stale"


@dataclass
class StageRecord:
    """One factor's outcome in the cascade."""

    stage: str
    factor: str
    error: float
    result: Optional[CalibrationResult] = None

    def to_dict(self) -> Dict:
        return {
            "stage": self.stage,
            "factor": self.factor,
            "error": self.error,
            "method": self.result.method if self.result else None,
            "nfev": self.result.nfev if self.result else 0,
        }


class CrossAssetModelBuilder:
    """
    Builds, calibrates and keeps current a CrossAssetModel.

    Args:
        market: Market container
        config: Model configuration
        contexts: Market configuration labels per calibration stage
        end_criteria: Optimizer stopping rules (default from config)

    Raises:
        ConfigurationError: On inconsistent configuration (e.g. FX count
            different from IR count minus one), before any calibration
        MissingMarketDataError: If a required curve or quote is missing
        CalibrationToleranceError: If a bootstrap calibration misses the
            configured tolerance

    Example:
        >>> builder = CrossAssetModelBuilder(market, config, ContextConfig(fx_calibration="xois"))
        >>> handle = builder.model_handle
        >>> handle.fx_forward(0, 5.0)
    """

    def __init__(
        self,
        market: Market,
        config: CrossAssetModelConfig,
        contexts: Optional[ContextConfig] = None,
        end_criteria: Optional[EndCriteria] = None,
    ):
        self.market = market
        self.config = config
        self.contexts = contexts or ContextConfig()
        self.end_criteria = end_criteria or EndCriteria(
            max_iterations=config.max_iterations,
            function_tolerance=config.function_tolerance,
            parameter_tolerance=config.parameter_tolerance,
            gradient_tolerance=config.gradient_tolerance,
        )

        self._state = BuilderState.UNINITIALIZED
        self._handle = ModelHandle()
        self._model: Optional[CrossAssetModel] = None
        self._observer: Optional[MarketObserver] = None
        self._lgm_builders: List[LgmBuilder] = []
        self._fx_builders: List[FxBsBuilder] = []
        self._eq_builders: List[EqBsBuilder] = []
        self._inf_builders: List[InfDkBuilder] = []
        self._records: List[StageRecord] = []
        self._errors: Dict[str, List[float]] = {}

        self._build()
        self._calibrate()

    # --- public accessors ------------------------------------------------

    @property
    def state(self) -> BuilderState:
        return self._state

    @property
    def model_handle(self) -> ModelHandle:
        """Handle that always points at the current model."""
        self._ensure_current()
        return self._handle

    def model(self) -> CrossAssetModel:
        self._ensure_current()
        return self._handle.current

    def swaption_calibration_errors(self) -> List[float]:
        self._ensure_current()
        return list(self._errors["ir"])

    def fx_option_calibration_errors(self) -> List[float]:
        self._ensure_current()
        return list(self._errors["fx"])

    def eq_option_calibration_errors(self) -> List[float]:
        self._ensure_current()
        return list(self._errors["eq"])

    def inf_cap_floor_calibration_errors(self) -> List[float]:
        self._ensure_current()
        return list(self._errors["inf"])

    def calibration_results(self) -> List[StageRecord]:
        self._ensure_current()
        return list(self._records)

    def calibration_report(self) -> "pd.DataFrame":
        """
        Per-instrument calibration report.

        Returns:
            DataFrame with columns stage, factor, instrument, expiry, market,
            model, error
        """
        import pandas as pd

        self._ensure_current()
        rows = []
        for stage, builders in self._stages():
            for b in builders:
                for helper in b.basket:
                    if not helper.has_pricing_formula:
                        continue
                    row = {"stage": stage, "factor": b.parametrization.key}
                    row.update(helper.to_dict())
                    rows.append(row)
        columns = ["stage", "factor", "instrument", "expiry", "market", "model", "error"]
        return pd.DataFrame(rows, columns=columns)

    def requires_recalibration(self) -> bool:
        """True if a sub-builder's market inputs or a correlation quote changed."""
        if self._state in (BuilderState.UNINITIALIZED, BuilderState.STALE):
            return True
        correlations_moved = self._observer is not None and self._observer.has_updated(reset=False)
        return correlations_moved or any(b.requires_recalibration() for b in self._sub_builders())

    def force_recalculate(self) -> None:
        """Rebuild and recalibrate unconditionally."""
        logger.info("Forced recalculation of cross-asset model")
        self._rebuild()

    # --- state machine ---------------------------------------------------

    def _ensure_current(self) -> None:
        if self._state == BuilderState.CALIBRATED:
            correlations_moved = self._observer.has_updated(reset=True)
            inputs_moved = any(b.requires_recalibration() for b in self._sub_builders())
            if not (correlations_moved or inputs_moved):
                return
            logger.info(
                f"Cross-asset model is stale (correlations changed: {correlations_moved}, "
                f"sub-builder inputs changed: {inputs_moved})"
            )
            self._state = BuilderState.STALE
        self._rebuild()

    def _rebuild(self) -> None:
        self._observer = None
        try:
            self._build()
            self._calibrate()
        except CrossAssetError:
            # the handle keeps the last calibrated model; retry on next access
            self._state = BuilderState.STALE
            raise

    def _sub_builders(self) -> List[SubBuilder]:
        return self._lgm_builders + self._fx_builders + self._eq_builders + self._inf_builders

    def _stages(self):
        return [
            ("ir", self._lgm_builders),
            ("fx", self._fx_builders),
            ("eq", self._eq_builders),
            ("inf", self._inf_builders),
        ]

    # --- build -----------------------------------------------------------

    def _build(self) -> None:
        config = self.config
        ctx = self.contexts
        validate_cross_references(config)
        logger.info(
            f"Building cross-asset model: {len(config.ir_configs)} IR, {len(config.fx_configs)} FX, "
            f"{len(config.eq_configs)} EQ, {len(config.inf_configs)} INF"
        )

        self._lgm_builders = []
        for c in config.ir_configs:
            with BoundLogger(stage="ir", factor=c.currency):
                self._lgm_builders.append(LgmBuilder(self.market, c, ctx.lgm_calibration, self.end_criteria))
        self._fx_builders = [FxBsBuilder(self.market, c, ctx.fx_calibration) for c in config.fx_configs]
        self._eq_builders = [EqBsBuilder(self.market, c, ctx.eq_calibration) for c in config.eq_configs]
        self._inf_builders = [InfDkBuilder(self.market, c, ctx.inf_calibration) for c in config.inf_configs]
        builders = self._sub_builders()
        logger.info(f"Constructed {len(builders)} sub-models")

        parametrizations = [b.parametrization for b in builders]
        correlations = CorrelationMatrixBuilder(config.correlations)
        matrix = correlations.state_correlation_matrix(
            [p.key for p in parametrizations], [p.state_size for p in parametrizations]
        )
        self._model = CrossAssetModel(
            parametrizations,
            matrix,
            self.market,
            configuration=ctx.final_model,
            salvaging=config.salvaging,
        )
        self._observer = MarketObserver(correlations.quotes())
        self._state = BuilderState.BUILT
        logger.info(f"Built {self._model!r}")

    # --- calibration cascade ---------------------------------------------

    def _calibrate(self) -> None:
        self._records = []
        self._errors = {"ir": [], "fx": [], "eq": [], "inf": []}
        self._calibrate_ir()
        self._calibrate_fx()
        self._calibrate_eq()
        self._calibrate_inf()

        with BoundLogger(stage="final"):
            logger.info(f"Binding model to final configuration '{self.contexts.final_model}'")
            self._model.configuration = self.contexts.final_model
            self._model.update()
        self._handle.link_to(self._model)
        self._state = BuilderState.CALIBRATED
        logger.info("Cross-asset model calibrated")

    def _check_tolerance(self, factor: str, error: float) -> None:
        tolerance = self.config.bootstrap_tolerance
        if abs(error) > tolerance:
            raise CalibrationToleranceError(factor, error, tolerance)

    def _record(self, stage: str, builder: SubBuilder, result: Optional[CalibrationResult]) -> float:
        error = builder.error()
        self._errors[stage].append(error)
        self._records.append(StageRecord(stage, builder.parametrization.key, error, result))
        return error

    def _calibrate_ir(self) -> None:
        for b in self._lgm_builders:
            key = b.parametrization.key
            error = self._record("ir", b, b.result)
            logger.info(f"{key}: calibration error {error:.3e}")
            if (
                self.config.gate_rate_bootstrap
                and b.calibration_type == CalibrationType.BOOTSTRAP
                and b.requires_calibration
            ):
                self._check_tolerance(key, error)

    def _calibrate_fx(self) -> None:
        cfg = self.contexts.fx_calibration
        logger.info(f"FX calibration on configuration '{cfg}'")
        for i, b in enumerate(self._fx_builders):
            key = b.parametrization.key
            with BoundLogger(stage="fx", factor=key):
                result = None
                if b.requires_calibration:
                    formula = AnalyticCcLgmFxOptionFormula(self._model, i, cfg)
                    result = self._run_bs(AssetType.FX, i, b, formula)
                else:
                    logger.debug(f"{key}: calibration not requested")
                error = self._record("fx", b, result)
                if result is not None and b.calibration_type == CalibrationType.BOOTSTRAP:
                    self._check_tolerance(key, error)

    def _calibrate_eq(self) -> None:
        cfg = self.contexts.eq_calibration
        logger.info(f"EQ calibration on configuration '{cfg}'")
        for k, b in enumerate(self._eq_builders):
            key = b.parametrization.key
            with BoundLogger(stage="eq", factor=key):
                result = None
                if b.requires_calibration:
                    ccy = self._model.ccy_index(b.parametrization.currency)
                    formula = AnalyticXAssetEquityOptionFormula(self._model, k, ccy, cfg)
                    result = self._run_bs(AssetType.EQ, k, b, formula)
                else:
                    logger.debug(f"{key}: calibration not requested")
                error = self._record("eq", b, result)
                if result is not None and b.calibration_type == CalibrationType.BOOTSTRAP:
                    self._check_tolerance(key, error)

    def _run_bs(self, asset_type: AssetType, index: int, builder: SubBuilder, formula) -> CalibrationResult:
        basket = builder.basket
        for helper in basket:
            helper.set_pricing_formula(formula)
        if builder.use_iterative():
            result = self._model.calibrate_bs_volatilities_iterative(asset_type, index, basket, self.end_criteria)
        else:
            result = self._model.calibrate_bs_volatilities_global(asset_type, index, basket, self.end_criteria)
        logger.info(f"{builder.parametrization.key}: {result.method} calibration, rmse={result.rmse:.3e}")
        return result

    def _calibrate_inf(self) -> None:
        cfg = self.contexts.final_model
        logger.info(f"INF calibration on configuration '{cfg}'")
        for j, b in enumerate(self._inf_builders):
            key = b.parametrization.key
            with BoundLogger(stage="inf", factor=key):
                result = None
                if b.requires_calibration:
                    formula = AnalyticDkCpiCapFloorFormula(self._model, j, b.base_cpi, cfg)
                    basket = b.basket
                    for helper in basket:
                        helper.set_pricing_formula(formula)
                    result = self._run_inf(j, b, basket)
                    logger.info(f"{key}: {result.method} calibration of {result.kinds}, rmse={result.rmse:.3e}")
                else:
                    logger.debug(f"{key}: calibration not requested")
                error = self._record("inf", b, result)
                if result is not None and b.calibration_type == CalibrationType.BOOTSTRAP:
                    self._check_tolerance(key, error)

    def _run_inf(self, index: int, builder: InfDkBuilder, basket) -> CalibrationResult:
        kinds = builder.calibrated_kinds()
        model = self._model
        if kinds == ("volatility", "reversion"):
            return model.calibrate_infdk_global(index, basket, self.end_criteria)
        if kinds == ("volatility",):
            if builder.use_iterative("volatility"):
                return model.calibrate_infdk_volatilities_iterative(index, basket, self.end_criteria)
            return model.calibrate_infdk_volatilities_global(index, basket, self.end_criteria)
        if builder.use_iterative("reversion"):
            return model.calibrate_infdk_reversions_iterative(index, basket, self.end_criteria)
        return model.calibrate_infdk_reversions_global(index, basket, self.end_criteria)

    def __repr__(self) -> str:
        return f"CrossAssetModelBuilder(state={self._state.value}, factors={len(self._sub_builders())})"

"""Cost-tiered model routing and usage accounting per detection module"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Sequence

from scrutix_engine.config import settings
from scrutix_engine.domain.models import Transaction
from scrutix_engine.infrastructure.ai.base import BaseAIProvider, DetectionOutput
from scrutix_engine.infrastructure.ai.types import AIDetectionType, AIResponseParseError, ChatOptions, ProviderTag

logger = logging.getLogger(__name__)


class ModelTier(str, Enum):
    FAST = "fast"
    STANDARD = "standard"
    PREMIUM = "premium"


@dataclass(frozen=True)
class ModelConfig:
    """Model backing a tier; prices in USD per 1M tokens"""

    tier: ModelTier
    family: str
    model_id: str
    input_price: float
    output_price: float
    max_tokens: int


MODEL_CONFIGS: Dict[ModelTier, ModelConfig] = {
    ModelTier.FAST: ModelConfig(ModelTier.FAST, "haiku", "claude-3-haiku-20240307", 0.25, 1.25, 4096),
    ModelTier.STANDARD: ModelConfig(ModelTier.STANDARD, "sonnet", "claude-sonnet-4-20250514", 3.0, 15.0, 8192),
    ModelTier.PREMIUM: ModelConfig(ModelTier.PREMIUM, "opus", "claude-opus-4-1-20250414", 15.0, 75.0, 8192),
}


class RouterModule(str, Enum):
    DOUBLONS = "doublons"
    PARSING = "parsing"
    CONFORMITE_OHADA = "conformite_ohada"
    RAPPROCHEMENT = "rapprochement"
    TRESORERIE = "tresorerie"
    CATEGORISATION = "categorisation"
    FRAIS_BANCAIRES = "frais_bancaires"
    CALCUL_AGIOS = "calcul_agios"
    DATES_VALEUR = "dates_valeur"
    AML = "aml"
    OPERATIONS_SUSPECTES = "operations_suspectes"
    FRAUDE = "fraude"
    RAPPORT_FINAL = "rapport_final"
    CONTESTATION_BANQUE = "contestation_banque"
    SYNTHESE_CLIENT = "synthese_client"
    CHAT = "chat"


@dataclass(frozen=True)
class ModuleProfile:
    """Static complexity class and average token footprint of one call"""

    tier: ModelTier
    avg_input_tokens: int
    avg_output_tokens: int
    label: str


MODULE_PROFILES: Dict[RouterModule, ModuleProfile] = {
    RouterModule.DOUBLONS: ModuleProfile(ModelTier.FAST, 2000, 500, "Détection des doublons"),
    RouterModule.PARSING: ModuleProfile(ModelTier.FAST, 3000, 1000, "Extraction de relevés"),
    RouterModule.CONFORMITE_OHADA: ModuleProfile(ModelTier.FAST, 1500, 800, "Conformité OHADA"),
    RouterModule.RAPPROCHEMENT: ModuleProfile(ModelTier.FAST, 4000, 1500, "Rapprochement bancaire"),
    RouterModule.TRESORERIE: ModuleProfile(ModelTier.FAST, 2500, 800, "Analyse de trésorerie"),
    RouterModule.CATEGORISATION: ModuleProfile(ModelTier.FAST, 3000, 1200, "Catégorisation"),
    RouterModule.FRAIS_BANCAIRES: ModuleProfile(ModelTier.STANDARD, 4000, 2000, "Audit des frais bancaires"),
    RouterModule.CALCUL_AGIOS: ModuleProfile(ModelTier.STANDARD, 5000, 2500, "Calcul des agios"),
    RouterModule.DATES_VALEUR: ModuleProfile(ModelTier.STANDARD, 3500, 1800, "Dates de valeur"),
    RouterModule.AML: ModuleProfile(ModelTier.STANDARD, 6000, 3000, "LCB-FT"),
    RouterModule.OPERATIONS_SUSPECTES: ModuleProfile(ModelTier.STANDARD, 5000, 2500, "Opérations suspectes"),
    RouterModule.FRAUDE: ModuleProfile(ModelTier.STANDARD, 5500, 2800, "Détection de fraude"),
    RouterModule.RAPPORT_FINAL: ModuleProfile(ModelTier.PREMIUM, 8000, 6000, "Rapport final"),
    RouterModule.CONTESTATION_BANQUE: ModuleProfile(ModelTier.PREMIUM, 6000, 4000, "Courrier de contestation"),
    RouterModule.SYNTHESE_CLIENT: ModuleProfile(ModelTier.PREMIUM, 5000, 3000, "Synthèse client"),
    RouterModule.CHAT: ModuleProfile(ModelTier.PREMIUM, 2000, 1000, "Assistant"),
}

# On-demand modules, not part of an analysis run
FULL_ANALYSIS_EXCLUDED = frozenset(
    {
        RouterModule.CHAT,
        RouterModule.RAPPORT_FINAL,
        RouterModule.CONTESTATION_BANQUE,
        RouterModule.SYNTHESE_CLIENT,
    }
)

DETECTION_MODULES: Dict[AIDetectionType, RouterModule] = {
    AIDetectionType.DUPLICATES: RouterModule.DOUBLONS,
    AIDetectionType.GHOST_FEES: RouterModule.FRAIS_BANCAIRES,
    AIDetectionType.OVERCHARGES: RouterModule.FRAIS_BANCAIRES,
    AIDetectionType.COMPLIANCE: RouterModule.FRAIS_BANCAIRES,
    AIDetectionType.FEES: RouterModule.FRAIS_BANCAIRES,
    AIDetectionType.INTEREST_ERRORS: RouterModule.CALCUL_AGIOS,
    AIDetectionType.VALUE_DATE: RouterModule.DATES_VALEUR,
    AIDetectionType.SUSPICIOUS: RouterModule.OPERATIONS_SUSPECTES,
    AIDetectionType.CASHFLOW: RouterModule.TRESORERIE,
    AIDetectionType.RECONCILIATION: RouterModule.RAPPROCHEMENT,
    AIDetectionType.MULTI_BANK: RouterModule.RAPPROCHEMENT,
    AIDetectionType.OHADA: RouterModule.CONFORMITE_OHADA,
    AIDetectionType.AML_LCB_FT: RouterModule.AML,
}


@dataclass
class CostEstimate:
    module: RouterModule
    tier: ModelTier
    model_id: str
    input_tokens: int
    output_tokens: int
    cost_usd: float
    cost_xaf: float


@dataclass
class BatchCostEstimate:
    estimates: List[CostEstimate]
    total_usd: float
    total_xaf: float
    by_tier: Dict[str, float] = field(default_factory=dict)


@dataclass
class ModuleUsage:
    calls: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0


def _as_module(module: RouterModule | AIDetectionType | str) -> RouterModule:
    if isinstance(module, AIDetectionType):
        return DETECTION_MODULES[module]
    if isinstance(module, RouterModule):
        return module
    try:
        return RouterModule(module)
    except ValueError:
        return DETECTION_MODULES[AIDetectionType(module)]


class ModelRouter:
    """
    Routes each detection module to a cost/quality tier.

    The tier table is static. With a Claude provider each tier maps to its
    own model; other backends serve every tier with their configured model.
    A separate provider may be supplied per tier.
    """

    def __init__(
        self,
        provider: BaseAIProvider,
        tier_providers: Dict[ModelTier, BaseAIProvider] | None = None,
        usd_to_xaf: float | None = None,
    ):
        self.provider = provider
        self.tier_providers = tier_providers or {}
        self.usd_to_xaf = usd_to_xaf or settings.usd_to_xaf
        self._usage: Dict[RouterModule, ModuleUsage] = {}

    def tier_for(self, module: RouterModule | AIDetectionType | str) -> ModelTier:
        return MODULE_PROFILES[_as_module(module)].tier

    def model_for(self, module: RouterModule | AIDetectionType | str) -> ModelConfig:
        return MODEL_CONFIGS[self.tier_for(module)]

    def provider_for(self, module: RouterModule | AIDetectionType | str) -> BaseAIProvider:
        return self.tier_providers.get(self.tier_for(module), self.provider)

    def options_for(self, module: RouterModule | AIDetectionType | str) -> ChatOptions:
        config = self.model_for(module)
        provider = self.provider_for(module)
        model_id = config.model_id if provider.name == ProviderTag.CLAUDE.value else None
        return ChatOptions(model=model_id, max_tokens=config.max_tokens)

    async def detect(
        self,
        detection_type: AIDetectionType,
        transactions: Sequence[Transaction],
        context: Dict[str, Any] | None = None,
    ) -> DetectionOutput:
        """Run one detection call on the routed provider and account for its tokens"""
        provider = self.provider_for(detection_type)
        try:
            output = await provider.detect(detection_type, transactions, context, self.options_for(detection_type))
        except AIResponseParseError as e:
            # The call was billed even though its payload is unreadable
            self.record_usage(detection_type, e.input_tokens, e.output_tokens)
            raise
        self.record_usage(detection_type, output.response.input_tokens, output.response.output_tokens)
        return output

    def estimate_cost(
        self,
        module: RouterModule | AIDetectionType | str,
        input_tokens: int | None = None,
        output_tokens: int | None = None,
    ) -> CostEstimate:
        router_module = _as_module(module)
        profile = MODULE_PROFILES[router_module]
        config = MODEL_CONFIGS[profile.tier]
        tokens_in = profile.avg_input_tokens if input_tokens is None else input_tokens
        tokens_out = profile.avg_output_tokens if output_tokens is None else output_tokens

        cost_usd = (tokens_in * config.input_price + tokens_out * config.output_price) / 1_000_000
        return CostEstimate(
            module=router_module,
            tier=profile.tier,
            model_id=config.model_id,
            input_tokens=tokens_in,
            output_tokens=tokens_out,
            cost_usd=cost_usd,
            cost_xaf=cost_usd * self.usd_to_xaf,
        )

    def estimate_batch_cost(self, modules: Iterable[RouterModule | AIDetectionType | str]) -> BatchCostEstimate:
        estimates = [self.estimate_cost(module) for module in modules]
        by_tier: Dict[str, float] = {}
        for estimate in estimates:
            by_tier[estimate.tier.value] = by_tier.get(estimate.tier.value, 0.0) + estimate.cost_usd
        total_usd = sum(e.cost_usd for e in estimates)
        return BatchCostEstimate(
            estimates=estimates,
            total_usd=total_usd,
            total_xaf=total_usd * self.usd_to_xaf,
            by_tier=by_tier,
        )

    def estimate_full_analysis_cost(self) -> BatchCostEstimate:
        """Every module an analysis run may call, on-demand ones excluded"""
        return self.estimate_batch_cost(m for m in RouterModule if m not in FULL_ANALYSIS_EXCLUDED)

    def record_usage(self, module: RouterModule | AIDetectionType | str, input_tokens: int, output_tokens: int) -> None:
        router_module = _as_module(module)
        usage = self._usage.setdefault(router_module, ModuleUsage())
        usage.calls += 1
        usage.input_tokens += input_tokens
        usage.output_tokens += output_tokens
        usage.cost_usd += self.estimate_cost(router_module, input_tokens, output_tokens).cost_usd

    def usage_stats(self) -> Dict[str, Any]:
        total_usd = sum(u.cost_usd for u in self._usage.values())
        return {
            "modules": {module.value: usage for module, usage in self._usage.items()},
            "total_calls": sum(u.calls for u in self._usage.values()),
            "total_tokens": sum(u.input_tokens + u.output_tokens for u in self._usage.values()),
            "total_cost_usd": total_usd,
            "total_cost_xaf": total_usd * self.usd_to_xaf,
        }

    def reset_usage(self) -> None:
        self._usage.clear()

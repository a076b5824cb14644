"""
MailShield Email Risk Pipeline

Coordinates the detection layers for one email:
- Deterministic rules
- URL intelligence
- Executive impersonation (when a tenant is known)
- Behavioral anomaly (when behavior data and a baseline are supplied)
- Threat-intel consensus on the email's URLs

Local layers run first. Threat intel is the only layer doing network I/O
and runs under whatever is left of the overall wall-clock budget; when
the budget runs out the result carries the layers that did complete.
A layer that fails is recorded in the metadata and contributes nothing.

Domain age is folded in last: signals from every layer are amplified
when the sender or a linked domain is young or a lookalike, and
correlation, compound-risk and registration-timing signals go into a
``domain_age`` layer.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from mailshield.config.settings import get_settings
from mailshield.models.behavior import EmailBehaviorData, TenantBaseline
from mailshield.models.email import ParsedEmail
from mailshield.models.signals import LayerName, LayerResult, Signal
from mailshield.models.url import DomainAgeInfo, RedirectHop, WhoisData
from mailshield.services.behavioral.anomaly import AnomalyDetector
from mailshield.services.bec.impersonation import ImpersonationDetector, check_cousin_domain
from mailshield.services.detection.deduplicator import deduplicate_signals
from mailshield.services.detection.engine import DeterministicEngine, get_deterministic_engine
from mailshield.services.detection.scoring import combine_layers, score_signals, signal_contribution
from mailshield.services.enrichment.consensus import ThreatIntelAggregator
from mailshield.services.url_intel.analyzer import URLIntelligenceAnalyzer
from mailshield.services.url_intel.domain_age import (
    DomainAgeCorrelator,
    analyze_domain_age,
    analyze_registration_timing,
    calculate_compound_domain_risk,
    get_domain_age_risk_level,
    registration_timing_signal,
)
from mailshield.services.url_intel.lookalike import detect_lookalike_domain
from mailshield.utils.helpers import extract_hostname, registrable_domain, utc_now

logger = logging.getLogger(__name__)


@dataclass
class AnalysisContext:
    """Per-email facts supplied by the caller alongside the parsed email."""
    tenant_id: Optional[str] = None
    organization_domain: Optional[str] = None
    known_tracking_domains: List[str] = field(default_factory=list)
    whois: Mapping[str, WhoisData] = field(default_factory=dict)
    redirect_chains: Mapping[str, List[RedirectHop]] = field(default_factory=dict)
    behavior: Optional[EmailBehaviorData] = None
    baseline: Optional[TenantBaseline] = None
    first_contact: bool = False
    run_threat_intel: bool = True


DOMAIN_AGE_CONFIDENCE = 0.8


@dataclass
class PipelineMetadata:
    """Bookkeeping about one pipeline run."""
    started_at: datetime = field(default_factory=utc_now)
    completed_at: Optional[datetime] = None
    duration_ms: int = 0
    layers_run: List[str] = field(default_factory=list)
    layers_failed: List[str] = field(default_factory=list)
    layers_skipped: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": self.duration_ms,
            "layers_run": self.layers_run,
            "layers_failed": self.layers_failed,
            "layers_skipped": self.layers_skipped,
            "warnings": self.warnings,
            "errors": self.errors,
        }


@dataclass
class PipelineResult:
    """Per-layer results plus the merged view."""
    layers: Dict[LayerName, LayerResult] = field(default_factory=dict)
    signals: List[Signal] = field(default_factory=list)
    total_score: int = 0
    metadata: PipelineMetadata = field(default_factory=PipelineMetadata)

    def layer(self, name: LayerName) -> Optional[LayerResult]:
        return self.layers.get(name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_score": self.total_score,
            "signals": [s.model_dump(mode="json") for s in self.signals],
            "layers": {
                name.value: layer.model_dump(mode="json") for name, layer in self.layers.items()
            },
            "metadata": self.metadata.to_dict(),
        }


class EmailRiskPipeline:
    """Runs every applicable detection layer for one email."""

    def __init__(
        self,
        deterministic: Optional[DeterministicEngine] = None,
        url_intelligence: Optional[URLIntelligenceAnalyzer] = None,
        aggregator: Optional[ThreatIntelAggregator] = None,
        impersonation: Optional[ImpersonationDetector] = None,
        anomaly: Optional[AnomalyDetector] = None,
        domain_age: Optional[DomainAgeCorrelator] = None,
        budget_seconds: Optional[float] = None,
    ):
        self.deterministic = deterministic or get_deterministic_engine()
        self.url_intelligence = url_intelligence or URLIntelligenceAnalyzer()
        self.aggregator = aggregator
        self.impersonation = impersonation or ImpersonationDetector()
        self.anomaly = anomaly
        self.domain_age = domain_age or DomainAgeCorrelator()
        self.budget_seconds = (
            budget_seconds if budget_seconds is not None else get_settings().pipeline_budget_seconds
        )

    async def analyze(
        self,
        email: ParsedEmail,
        context: Optional[AnalysisContext] = None,
    ) -> PipelineResult:
        """
        Analyze one parsed email.

        Args:
            email: Parsed email
            context: Tenant facts and optional behavior/baseline inputs

        Returns:
            PipelineResult; never raises for a failing layer
        """
        context = context or AnalysisContext()
        result = PipelineResult()
        deadline = time.perf_counter() + self.budget_seconds
        urls = email.all_urls

        # Phase 1: local layers
        self._run_layer(
            result, LayerName.DETERMINISTIC,
            lambda: self.deterministic.analyze(email, context.known_tracking_domains),
        )
        self._run_layer(
            result, LayerName.URL_INTELLIGENCE,
            lambda: self.url_intelligence.analyze(urls, context.whois, context.redirect_chains),
        )

        if context.tenant_id:
            try:
                layer = await self.impersonation.analyze(
                    context.tenant_id,
                    email.sender.email,
                    email.sender.display_name,
                    email.reply_to.email if email.reply_to else None,
                    context.organization_domain,
                )
                self._record(result, layer)
            except Exception as e:
                self._fail(result, LayerName.IMPERSONATION, e)
        else:
            result.metadata.layers_skipped.append(LayerName.IMPERSONATION.value)

        if self.anomaly is not None and context.behavior is not None and context.baseline is not None:
            self._run_layer(
                result, LayerName.ANOMALY,
                lambda: self.anomaly.analyze(context.behavior, context.baseline),
            )
        else:
            result.metadata.layers_skipped.append(LayerName.ANOMALY.value)

        # Phase 2: threat intel under the remaining budget
        if self.aggregator is not None and context.run_threat_intel and urls:
            remaining = deadline - time.perf_counter()
            try:
                if remaining <= 0:
                    raise asyncio.TimeoutError
                layer = await asyncio.wait_for(self.aggregator.analyze(urls), timeout=remaining)
                self._record(result, layer)
            except asyncio.TimeoutError:
                message = f"threat_intel exceeded the {self.budget_seconds}s analysis budget"
                result.metadata.layers_failed.append(LayerName.THREAT_INTEL.value)
                result.metadata.warnings.append(message)
                logger.warning(message)
            except Exception as e:
                self._fail(result, LayerName.THREAT_INTEL, e)
        else:
            result.metadata.layers_skipped.append(LayerName.THREAT_INTEL.value)

        # Phase 3: domain age correlation across the completed layers
        try:
            self._correlate_domain_age(result, email, context)
        except Exception as e:
            self._fail(result, LayerName.DOMAIN_AGE, e)

        # Merge
        layers = list(result.layers.values())
        result.signals = deduplicate_signals([s for layer in layers for s in layer.signals])
        result.total_score = combine_layers(layers)

        result.metadata.completed_at = utc_now()
        result.metadata.duration_ms = int(
            (result.metadata.completed_at - result.metadata.started_at).total_seconds() * 1000
        )
        logger.info(
            f"Analyzed {email.message_id or 'email'}: score={result.total_score}, "
            f"layers={','.join(result.metadata.layers_run)}"
        )
        return result

    def _domain_facts(self, email: ParsedEmail, context: AnalysisContext) -> List[DomainAgeInfo]:
        """Age and lookalike facts for the sender domain and every linked domain."""
        in_links: Dict[str, bool] = {}
        if email.sender.domain:
            in_links[registrable_domain(email.sender.domain)] = False
        for url in email.all_urls:
            hostname = extract_hostname(url)
            if hostname:
                in_links[registrable_domain(hostname)] = True

        facts = []
        for domain, linked in in_links.items():
            age = analyze_domain_age(domain, context.whois.get(domain))
            age_days = age.age_days if age.age_days >= 0 else None

            target = None
            lookalike = detect_lookalike_domain(domain)
            if lookalike.is_lookalike:
                target = lookalike.target_domain
            elif context.organization_domain and check_cousin_domain(domain, context.organization_domain)[0]:
                target = context.organization_domain.lower()

            if age_days is None and target is None:
                continue
            facts.append(DomainAgeInfo(
                domain=domain, age_days=age_days, lookalike_target=target, in_email_links=linked,
            ))
        return facts

    def _correlate_domain_age(
        self,
        result: PipelineResult,
        email: ParsedEmail,
        context: AnalysisContext,
    ) -> None:
        facts = self._domain_facts(email, context)
        if not facts:
            return

        config = self.domain_age.config
        strongest = max(
            facts,
            key=lambda d: self.domain_age.effective_multiplier(
                d, get_domain_age_risk_level(d.age_days, config)
            ),
        )
        original = [s for layer in result.layers.values() for s in layer.signals]

        # Amplify in place so each layer keeps its own signals
        multiplier = 1.0
        for name, layer in list(result.layers.items()):
            correlation = self.domain_age.correlate(layer.signals, strongest)
            if not correlation.amplification_applied:
                continue
            amplified = correlation.correlated_signals[:len(layer.signals)]
            delta = sum(
                signal_contribution(new) - signal_contribution(old)
                for new, old in zip(amplified, layer.signals)
            )
            multiplier = correlation.amplification_multiplier
            result.layers[name] = layer.model_copy(update={
                "signals": amplified,
                "score": min(100, layer.score + delta),
                "metadata": {**layer.metadata, "domain_age_multiplier": multiplier},
            })

        extra: List[Signal] = []
        for domain in facts:
            correlation = self.domain_age.correlate(original, domain)
            extra.extend(correlation.correlated_signals[len(original):])

        sender_domain = registrable_domain(email.sender.domain) if email.sender.domain else None
        sender = next((d for d in facts if d.domain == sender_domain), None)
        if sender is not None:
            compound = calculate_compound_domain_risk(original, sender.age_days, context.first_contact, config)
            extra.extend(compound.signals)

            whois = context.whois.get(sender.domain)
            organization = (context.organization_domain or "").lower()
            if whois is not None and whois.created_date is not None and sender.domain != organization:
                timing = analyze_registration_timing(
                    sender.domain, whois.created_date, organization or None, config=config,
                )
                signal = registration_timing_signal(sender.domain, timing)
                if signal is not None:
                    extra.append(signal)

        if not extra:
            return
        self._record(result, LayerResult(
            layer=LayerName.DOMAIN_AGE,
            score=score_signals(extra),
            confidence=DOMAIN_AGE_CONFIDENCE,
            signals=extra,
            metadata={
                "domains": [d.model_dump() for d in facts],
                "amplification_multiplier": multiplier,
            },
        ))

    def _run_layer(self, result: PipelineResult, name: LayerName, run) -> None:
        try:
            self._record(result, run())
        except Exception as e:
            self._fail(result, name, e)

    @staticmethod
    def _record(result: PipelineResult, layer: LayerResult) -> None:
        result.layers[layer.layer] = layer
        result.metadata.layers_run.append(layer.layer.value)

    @staticmethod
    def _fail(result: PipelineResult, name: LayerName, error: Exception) -> None:
        result.metadata.layers_failed.append(name.value)
        result.metadata.errors.append(f"{name.value}: {error}")
        logger.warning(f"{name.value} layer failed: {error}", exc_info=True)

"""
Convergence engine - scraped records in, one canonical record per entity out.

Leaf first: similarity -> event_scoring -> fusion -> refresher ->
change_detector -> workflow -> matching, with ingestion, enrichment and the
orchestrator around them.
"""
from convergence.orchestrator import ConvergenceOrchestrator
from convergence.results import BatchReport, ItemResult, MatchResult

__all__ = [
    'ConvergenceOrchestrator',
    'BatchReport',
    'ItemResult',
    'MatchResult',
]

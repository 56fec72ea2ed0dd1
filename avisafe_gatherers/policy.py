"""
AviSafe Gatherers — Company safety policy
"""

import logging
from typing import Optional

from avisafe_risk.policy import SafetyPolicy
from avisafe_store import DatabaseService

log = logging.getLogger("gatherers.policy")


def load_safety_policy(store: DatabaseService, company_id: Optional[str]) -> SafetyPolicy:
    """
    Company limits plus linked document summaries. A missing row, a store
    failure or an unreadable config value yields the built-in defaults.
    """
    if not company_id:
        return SafetyPolicy()
    try:
        row = store.get_company_sora_config(company_id)
        if row is None:
            log.info(f"[policy] no SORA config for company {company_id}, using defaults")
            return SafetyPolicy()
        documents = store.get_document_summaries(row.get("linked_document_ids") or [])
        policy    = SafetyPolicy.from_row(row, documents)
    except Exception as exc:
        log.warning(f"[policy] config lookup failed for company {company_id}: {exc}")
        return SafetyPolicy()

    log.info(f"[policy] company config loaded ({len(documents)} linked document(s))")
    return policy

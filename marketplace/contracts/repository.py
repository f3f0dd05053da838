"""
Accès aux données pour la feature 'contracts'.
- contract_templates: lecture par service_type (erreur relevée, l'appelant décide)
- contracts: insertion des contrats signés (client utilisateur, RLS active)
"""
from typing import Any, Dict, List, Sequence
import logging
import marketplace.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)

# module marketplace.contracts.repository
def fetch_templates_by_service_types(service_types: Sequence[str]) -> Dict[str, str]:
    """
    Retourne {service_type: content} pour les types demandés.
    Un type sans modèle est simplement absent du résultat.
    """
    types = [str(t) for t in service_types if t]
    if not types:
        return {}
    try:
        res = (
            supabase_client.get_supabase()
            .table("contract_templates")
            .select("service_type, content")
            .in_("service_type", types)
            .execute()
        )
    except Exception:
        logger.exception("contracts.repository.fetch_templates_by_service_types failed types=%s", types)
        raise
    out: Dict[str, str] = {}
    for row in res.data or []:
        st = row.get("service_type")
        if st and row.get("content") and st not in out:
            out[st] = row["content"]
    return out

def insert_contracts(rows: List[Dict[str, Any]], user_token: str) -> bool:
    """
    Insert des contrats signés avec le token utilisateur (respecte RLS).
    Retourne False en cas d'erreur (loggée).
    """
    if not rows:
        return True
    try:
        (
            supabase_client.get_user_supabase(user_token)
            .table("contracts")
            .insert(rows)
            .execute()
        )
        return True
    except Exception:
        logger.exception("contracts.repository.insert_contracts failed count=%d", len(rows))
        return False

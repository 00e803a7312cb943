# pdf_rag/memory/retriever.py
from typing import List, Dict, Optional


def retrieve(
    query: str,
    embedder,
    store,
    threshold: float,
    limit: int,
    document_name: Optional[str] = None,
) -> List[Dict]:
    """
    Embed a query and return matching chunks with similarity scores.

    When the store can filter by document before ranking, the filter
    is pushed into the search. Otherwise the ranked candidates are
    filtered here, so callers should ask for more candidates.

    Returns:
        List of dicts with keys: content, document_name, chunk_index, similarity
    """
    query_embedding = embedder.embed(query)

    if document_name is not None and store.supports_prefilter:
        return store.search(
            query_embedding,
            threshold=threshold,
            limit=limit,
            document_name=document_name,
        )

    results = store.search(
        query_embedding,
        threshold=threshold,
        limit=limit,
    )

    if document_name is not None:
        results = [r for r in results if r["document_name"] == document_name]

    return results

from permadeploy_core.indexer.http import OrdinalsIndexer, parse_output

__all__ = ["OrdinalsIndexer", "parse_output"]

"""Pagination, bulk writes, aggregation and transaction helpers."""

from pgoptimizer.query.aggregation import AggregationQuery, TimeSeriesDataPoint, TimeSeriesQuery
from pgoptimizer.query.builder import AnalyzerNotConfiguredError, OptimizedQueryBuilder
from pgoptimizer.query.bulk import BulkUpdateBuilder, BulkUpdateError, batch_insert, batch_upsert
from pgoptimizer.query.pagination import KeysetPagination, PaginatedQuery, PaginatedResult
from pgoptimizer.query.transactions import (
    QueryOptions,
    TransactionOptimizer,
    TransactionRetryExhaustedError,
    apply_query_options,
    is_retryable_error,
    optimize_query_with_hints,
    with_query_timeout,
)
from pgoptimizer.query.where import WhereClause

__all__ = [
    "AggregationQuery",
    "TimeSeriesDataPoint",
    "TimeSeriesQuery",
    "AnalyzerNotConfiguredError",
    "OptimizedQueryBuilder",
    "BulkUpdateBuilder",
    "BulkUpdateError",
    "batch_insert",
    "batch_upsert",
    "KeysetPagination",
    "PaginatedQuery",
    "PaginatedResult",
    "QueryOptions",
    "TransactionOptimizer",
    "TransactionRetryExhaustedError",
    "apply_query_options",
    "is_retryable_error",
    "optimize_query_with_hints",
    "with_query_timeout",
    "WhereClause",
]

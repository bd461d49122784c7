"""
Configuration Management for tsp-exact.

This module provides a type-safe, validated configuration system using Pydantic.
Configuration values are loaded from environment variables or .env file with
defaults that reproduce the reference behaviour of the exact solver.

Usage:
    >>> from tsp_exact.config import settings
    >>> print(settings.solver.mathopt_solver_type)
    >>> print(settings.clustering.min_cities)
    >>> print(settings.heuristic.time_limit_seconds)
"""

from typing import Optional, Literal
from pydantic import Field, field_validator, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


# =============================================================================
# MILP Solver Configuration
# =============================================================================

class SolverConfig(BaseSettings):
    """
    MILP backend configuration for the exact solver.

    Controls which backend is used when the caller does not pass one
    explicitly, which underlying MathOpt solver is driven, and the limits
    applied to every solver invocation.

    Environment Variables:
        TSP_SOLVER_DEFAULT_BACKEND: Backend used when none is given (mathopt, scipy)
        TSP_SOLVER_MATHOPT_SOLVER_TYPE: MathOpt solver (default: GSCIP)
        TSP_SOLVER_TIME_LIMIT_SECONDS: Time limit per solver call (default: none)
        TSP_SOLVER_SILENT: Suppress the solver's own log output (default: true)

    Example:
        >>> solver_config = SolverConfig()
        >>> print(solver_config.default_backend)  # None
        >>> print(solver_config.mathopt_solver_type)  # GSCIP
    """

    # No default: callers must choose a backend unless this is configured
    default_backend: Optional[Literal["mathopt", "scipy"]] = Field(
        default=None,
        description="Backend used when no backend is passed or set as default"
    )

    mathopt_solver_type: Literal["GSCIP", "HIGHS", "GUROBI", "CP_SAT", "GLPK"] = Field(
        default="GSCIP",
        description="Underlying solver driven through OR-Tools MathOpt"
    )

    time_limit_seconds: Optional[float] = Field(
        default=None,
        gt=0.0,
        description="Wall-clock limit for each solver invocation"
    )

    silent: bool = Field(
        default=True,
        description="Suppress the solver's own log output"
    )

    # Guards against a solver that keeps returning the same subtours
    max_iterations: int = Field(
        default=10000,
        ge=1,
        description="Maximum number of solve/eliminate rounds in one solve"
    )

    model_config = SettingsConfigDict(
        env_prefix="TSP_SOLVER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


# =============================================================================
# Clustering Warm-Start Configuration
# =============================================================================

class ClusteringConfig(BaseSettings):
    """
    Hierarchical clustering warm-start configuration.

    The preprocessor splits large symmetric problems into clusters, solves
    each mid-sized cluster on its own and pre-seeds the top-level model with
    the resulting sub-tours. All thresholds are tuning knobs, not correctness
    requirements.

    Environment Variables:
        TSP_CLUSTERING_ENABLED: Enable the preprocessor (default: true)
        TSP_CLUSTERING_MIN_CITIES: Problems must be larger than this (default: 10)
        TSP_CLUSTERING_CLUSTER_DIVISOR: k = N // divisor clusters (default: 10)
        TSP_CLUSTERING_MIN_CLUSTER_SIZE: Clusters must be larger than this (default: 3)
        TSP_CLUSTERING_MAX_CLUSTER_FRACTION: Clusters must be smaller than this share of N (default: 0.8)

    Example:
        >>> clustering = ClusteringConfig()
        >>> clustering.num_clusters(48)  # 4
        >>> clustering.accepts_cluster(5, 48)  # True
    """

    enabled: bool = Field(
        default=True,
        description="Run the clustering preprocessor on eligible problems"
    )

    min_cities: int = Field(
        default=10,
        ge=3,
        description="Only problems with more cities than this are clustered"
    )

    cluster_divisor: int = Field(
        default=10,
        ge=1,
        description="Number of clusters is N // cluster_divisor"
    )

    min_cluster_size: int = Field(
        default=3,
        ge=2,
        description="Clusters with at most this many cities are skipped"
    )

    max_cluster_fraction: float = Field(
        default=0.8,
        gt=0.0,
        le=1.0,
        description="Clusters with at least this share of all cities are skipped"
    )

    linkage_method: Literal["single", "complete", "average", "weighted"] = Field(
        default="single",
        description="Linkage criterion passed to scipy.cluster.hierarchy.linkage"
    )

    def num_clusters(self, num_cities: int) -> int:
        """Number of clusters the dendrogram is cut into."""
        return num_cities // self.cluster_divisor

    def accepts_cluster(self, cluster_size: int, num_cities: int) -> bool:
        """Check whether a cluster lies strictly inside the size window."""
        return self.min_cluster_size < cluster_size < self.max_cluster_fraction * num_cities

    model_config = SettingsConfigDict(
        env_prefix="TSP_CLUSTERING_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


# =============================================================================
# Heuristic Warm-Start Configuration
# =============================================================================

class HeuristicConfig(BaseSettings):
    """
    Heuristic tour construction used to warm start the MILP solver.

    Environment Variables:
        TSP_HEURISTIC_ENABLED: Default for heuristic_warmstart (default: true)
        TSP_HEURISTIC_TIME_LIMIT_SECONDS: Routing search limit (default: 1)
        TSP_HEURISTIC_LOCAL_SEARCH_METAHEURISTIC: OR-Tools metaheuristic
        TSP_HEURISTIC_COST_SCALE: Multiplier applied before rounding costs to integers
    """

    enabled: bool = Field(
        default=True,
        description="Warm start every solve with a heuristic tour"
    )

    time_limit_seconds: int = Field(
        default=1,
        ge=1,
        le=3600,
        description="Time limit for the OR-Tools routing search"
    )

    local_search_metaheuristic: Literal[
        "AUTOMATIC",
        "GREEDY_DESCENT",
        "GUIDED_LOCAL_SEARCH",
        "SIMULATED_ANNEALING",
        "TABU_SEARCH",
    ] = Field(
        default="GREEDY_DESCENT",
        description="Local search metaheuristic for the routing search"
    )

    # Routing works on integer arc costs
    cost_scale: float = Field(
        default=1000.0,
        gt=0.0,
        description="Scale factor applied to costs before rounding to integers"
    )

    model_config = SettingsConfigDict(
        env_prefix="TSP_HEURISTIC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


# =============================================================================
# Logging Configuration
# =============================================================================

class LoggingConfig(BaseSettings):
    """
    Logging configuration for the CLI and scripts.

    Environment Variables:
        TSP_LOG_LEVEL: Logging level (default: INFO)
        TSP_LOG_FORMAT: Format string passed to logging.basicConfig
    """

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level"
    )

    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log record format"
    )

    @field_validator("level", mode="before")
    @classmethod
    def normalize_level(cls, v):
        """Accept lower-case level names."""
        return v.upper() if isinstance(v, str) else v

    model_config = SettingsConfigDict(
        env_prefix="TSP_LOG_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


# =============================================================================
# Global Settings Container
# =============================================================================

class Settings(BaseSettings):
    """
    Global application settings container.

    Usage:
        >>> from tsp_exact.config import settings
        >>>
        >>> settings.solver.default_backend
        >>> settings.clustering.cluster_divisor
        >>> settings.heuristic.local_search_metaheuristic
    """

    solver: SolverConfig = Field(default_factory=SolverConfig)

    clustering: ClusteringConfig = Field(default_factory=ClusteringConfig)

    heuristic: HeuristicConfig = Field(default_factory=HeuristicConfig)

    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @computed_field
    @property
    def has_default_backend(self) -> bool:
        """Check if a default backend is configured."""
        return self.solver.default_backend is not None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


# =============================================================================
# Global Configuration Instance
# =============================================================================

# Singleton settings instance - import this throughout the application
settings = Settings()

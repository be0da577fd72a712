"""
Taxi Tip Modeling
=================

A batch analysis pipeline that predicts NYC yellow-taxi tip amounts from
trip records in two disjoint time windows.

Modules:
    - data_loader: Trip/zone table ingestion and validation
    - cleaning: Validity filtering and percentile outlier trimming
    - features: Temporal, categorical and duration features
    - design: Shared design-matrix layout for both windows
    - selection: Subset search by adjusted R²
    - model: OLS, backward-AIC OLS and ridge fitting
    - evaluation: Model comparison and final-model selection
    - eda: Exploratory plots
    - pipeline: Stage composition
"""

__version__ = "1.0.0"
__author__ = "Predictive Analytics Team"

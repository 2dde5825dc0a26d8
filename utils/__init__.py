"""
Utility modules for the Explore statistics core.

Contains:
- explore_types: Variables, analysis parameters, service contract and errors
- grouping: Partition of dataset rows by factor levels
- examine_lib: Default thread-pool numeric service (EXAMINE statistics)
- explore_runner: Per-group task dispatch, aggregation and regrouping
- explore_formatters: The five Explore report tables
- table_model: Renderer-independent table tree
- formatting: Number, percent and factor-label formatting
- dataset_io: pandas DataFrame adapters
"""

"""Configuration for scalezero.

Modules:
    base_config: BaseSettings env helpers and the YAML overlay loader
    settings: ScaleZeroConfig and the process-wide get_config() accessor
"""

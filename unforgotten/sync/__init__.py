"""Offline-first sync engine for Unforgotten.

Modules:
    connectivity  : Reachability monitor with transition events
    gateways      : Remote entity gateways over Supabase Postgres
    strategies    : Per-entity pull-and-merge strategies and their registry
    queue         : Pending change queue drain (the push path)
    derivation    : Local derivation of today's medication logs
    orchestrator  : Full-sync pipeline, flush scheduling, observable status
    repository    : Offline-first write path that queues changes
    config_loader : Load/validate/hot-reload sync_config.yaml
    errors        : Sync error taxonomy
"""

"""
Reflex Guard
============

Real-time anti-cheat validation for reflex game sessions. The engine only
detects and scores suspicious play; enforcement belongs to the host.

- anticheat_core: validators, orchestrator and configuration
- audit: offline replay of recorded sessions

Tunable parameters live in anticheat_config.yaml.
"""

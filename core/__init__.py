"""
Core policy logic package for HomeGate.

Contains the headless PolicyEngine (core.engine) and its injected clock
(core.clock). Zero platform dependencies. Import from the submodules
directly; the tracking ledgers depend on core.clock.
"""

"""
Crisis Safety Module

Risk indicator extraction, severity classification, deep analysis,
history correlation, resource matching, intervention planning,
escalation and safety plans, orchestrated by the CrisisCoordinator.

Usage:
    from sparq_safety.safety.factory import build_coordinator

    coordinator = build_coordinator(settings)
    evaluation = await coordinator.evaluate(
        user_id="user_123",
        couple_id=None,
        text="I don't see the point anymore",
    )
"""

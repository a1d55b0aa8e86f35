"""AND-combination of a rule's conditions."""

from rulebook.engine.conditions import conditions_for, evaluate


def matches(rule, record) -> bool:
    """True when every condition the rule specifies holds for ``record``.

    A rule that specifies no condition at all never matches.
    """
    conditions = conditions_for(rule)
    if not conditions:
        return False
    return all(evaluate(condition, record) for condition in conditions)

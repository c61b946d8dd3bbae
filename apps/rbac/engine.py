"""
Access control resolution engine.

Pure functions over an Actor and a RuleSnapshot. Nothing here touches the
database or the cache; the service layer loads the snapshot and hands it in.

Permission precedence, first match wins:
1. no authenticated identity: deny
2. super-role: platform rule, then tenant rule for the scoped company,
   then allow
3. tenant actor without a company: deny
4. user override
5. dynamic tri-state rules across held dynamic roles (deny beats allow)
6. boolean role rule for the company
7. deny
"""
import uuid
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import FrozenSet, Iterable, List, Mapping, Optional, Tuple

from apps.rbac.catalog import DEFAULT_MENU_HEADINGS, DEFAULT_MENU_ITEMS, MANAGE_ALL
from apps.rbac.roles import is_super_role


class Effect(str, Enum):
    ALLOW = 'allow'
    DENY = 'deny'
    UNSET = 'unset'


_NEXT_EFFECT = {
    Effect.UNSET: Effect.ALLOW,
    Effect.ALLOW: Effect.DENY,
    Effect.DENY: Effect.UNSET,
}


def next_effect(effect: Effect) -> Effect:
    """Cycle a tri-state cell: Unset -> Allow -> Deny -> Unset."""
    return _NEXT_EFFECT[Effect(effect)]


def combine_effects(effects: Iterable[Effect]) -> Effect:
    """Combine effects from several roles: any deny wins, then any allow, else unset."""
    seen = {Effect(effect) for effect in effects}
    if Effect.DENY in seen:
        return Effect.DENY
    if Effect.ALLOW in seen:
        return Effect.ALLOW
    return Effect.UNSET


@dataclass(frozen=True)
class Actor:
    """
    The identity a decision is made for.

    ``impersonator_role`` is set when a platform administrator evaluates
    access as ``role``; decisions then follow ``role`` alone.
    """

    user_id: Optional[uuid.UUID]
    role: Optional[str]
    company_id: Optional[uuid.UUID] = None
    impersonator_role: Optional[str] = None

    @classmethod
    def anonymous(cls) -> 'Actor':
        return cls(user_id=None, role=None, company_id=None)

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    @property
    def is_super(self) -> bool:
        return self.is_authenticated and is_super_role(self.role)

    @property
    def is_impersonating(self) -> bool:
        return self.impersonator_role is not None


@dataclass(frozen=True)
class MenuRule:
    is_visible: bool = True
    sort_order: int = 0
    custom_label: Optional[str] = None
    custom_icon: Optional[str] = None
    heading: Optional[str] = None


def _frozen(mapping) -> Mapping:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class RuleSnapshot:
    """
    Rules that apply to one actor at one point in time.

    ``dynamic_effects`` holds one mapping of permission key to Effect per
    dynamic role the actor holds.
    """

    platform_rules: Mapping[str, bool] = field(default_factory=dict)
    role_rules: Mapping[str, bool] = field(default_factory=dict)
    overrides: Mapping[str, bool] = field(default_factory=dict)
    dynamic_effects: Tuple[Mapping[str, Effect], ...] = ()
    features: Mapping[str, bool] = field(default_factory=dict)
    menu: Mapping[str, MenuRule] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, 'platform_rules', _frozen(self.platform_rules))
        object.__setattr__(self, 'role_rules', _frozen(self.role_rules))
        object.__setattr__(self, 'overrides', _frozen(self.overrides))
        object.__setattr__(self, 'dynamic_effects', tuple(
            _frozen({key: Effect(value) for key, value in effects.items()})
            for effects in self.dynamic_effects
        ))
        object.__setattr__(self, 'features', _frozen(self.features))
        object.__setattr__(self, 'menu', _frozen(self.menu))

    def dynamic_effect(self, key: str) -> Effect:
        return combine_effects(effects.get(key, Effect.UNSET) for effects in self.dynamic_effects)


class DecisionLayer(str, Enum):
    UNAUTHENTICATED = 'unauthenticated'
    PLATFORM_RULE = 'platform_rule'
    COMPANY_RULE = 'company_rule'
    SUPER_ROLE_DEFAULT = 'super_role_default'
    NO_COMPANY = 'no_company'
    USER_OVERRIDE = 'user_override'
    DYNAMIC_ROLE = 'dynamic_role'
    ROLE_RULE = 'role_rule'
    DEFAULT_DENY = 'default_deny'


@dataclass(frozen=True)
class TraceStep:
    step: str
    result: str
    detail: str = ''


@dataclass(frozen=True)
class Decision:
    allowed: bool
    layer: DecisionLayer
    reason: str
    trace: Tuple[TraceStep, ...] = ()

    def __bool__(self):
        return self.allowed


def _rule_state(value: Optional[bool]) -> str:
    if value is None:
        return 'unset'
    return 'allow' if value else 'deny'


def explain_permission(actor: Actor, key: str, snapshot: RuleSnapshot) -> Decision:
    """
    Decide ``key`` for ``actor`` and report which layer decided it.

    Returns:
        Decision with the boolean outcome, the deciding layer, a short
        reason and the ordered trace of steps evaluated
    """
    trace: List[TraceStep] = []

    def decide(allowed, layer, reason):
        return Decision(allowed=allowed, layer=layer, reason=reason, trace=tuple(trace))

    if actor is None or not actor.is_authenticated:
        trace.append(TraceStep('user_status', 'deny', 'no authenticated identity'))
        return decide(False, DecisionLayer.UNAUTHENTICATED, 'No authenticated identity')
    trace.append(TraceStep('user_status', 'pass', f"role={actor.role}"))

    if is_super_role(actor.role):
        platform = snapshot.platform_rules.get(key)
        trace.append(TraceStep('platform_rule', _rule_state(platform)))
        if platform is not None:
            return decide(platform, DecisionLayer.PLATFORM_RULE,
                          f"Platform rule {'grants' if platform else 'denies'} {key}")

        if actor.company_id is not None:
            company_rule = snapshot.role_rules.get(key)
            trace.append(TraceStep('company_rule', _rule_state(company_rule)))
            if company_rule is not None:
                return decide(company_rule, DecisionLayer.COMPANY_RULE,
                              f"Company rule {'grants' if company_rule else 'denies'} {key}")

        trace.append(TraceStep('default', 'allow', 'super-role'))
        return decide(True, DecisionLayer.SUPER_ROLE_DEFAULT, 'Super-role is allowed by default')

    if actor.company_id is None:
        trace.append(TraceStep('company_scope', 'deny', 'tenant actor without company'))
        return decide(False, DecisionLayer.NO_COMPANY, 'Tenant actor has no company scope')

    override = snapshot.overrides.get(key)
    trace.append(TraceStep('user_override', _rule_state(override)))
    if override is not None:
        return decide(override, DecisionLayer.USER_OVERRIDE,
                      f"User override {'grants' if override else 'denies'} {key}")

    effect = snapshot.dynamic_effect(key)
    trace.append(TraceStep('dynamic_roles', effect.value,
                           f"{len(snapshot.dynamic_effects)} dynamic role(s) held"))
    if effect is not Effect.UNSET:
        allowed = effect is Effect.ALLOW
        return decide(allowed, DecisionLayer.DYNAMIC_ROLE,
                      f"Dynamic role rules {'allow' if allowed else 'deny'} {key}")

    role_rule = snapshot.role_rules.get(key)
    trace.append(TraceStep('role_rule', _rule_state(role_rule)))
    if role_rule is not None:
        return decide(role_rule, DecisionLayer.ROLE_RULE,
                      f"Role rule {'grants' if role_rule else 'denies'} {key}")

    trace.append(TraceStep('default', 'deny'))
    return decide(False, DecisionLayer.DEFAULT_DENY, 'No rule grants this permission')


def has_permission(actor: Actor, key: str, snapshot: RuleSnapshot) -> bool:
    return explain_permission(actor, key, snapshot).allowed


def has_any_permission(actor: Actor, keys: Iterable[str], snapshot: RuleSnapshot,
                       require_all: bool = False) -> bool:
    """
    Check several keys at once.

    AND across ``keys`` when ``require_all`` is set, OR otherwise. An empty
    key list is false in both modes.
    """
    keys = list(keys)
    if not keys:
        return False
    results = (has_permission(actor, key, snapshot) for key in keys)
    return all(results) if require_all else any(results)


def get_all_permissions(actor: Actor, snapshot: RuleSnapshot) -> FrozenSet[str]:
    """
    Effective permission keys for an actor.

    Super-roles get the enabled platform and company keys plus the
    ``manage_all`` sentinel. Tenant actors get enabled role rules, adjusted
    by dynamic effects and finally by user overrides.
    """
    if actor is None or not actor.is_authenticated:
        return frozenset()

    if is_super_role(actor.role):
        granted = {key for key, enabled in snapshot.platform_rules.items() if enabled}
        granted |= {key for key, enabled in snapshot.role_rules.items() if enabled}
        granted.add(MANAGE_ALL)
        return frozenset(granted)

    if actor.company_id is None:
        return frozenset()

    granted = {key for key, enabled in snapshot.role_rules.items() if enabled}

    dynamic_keys = set()
    for effects in snapshot.dynamic_effects:
        dynamic_keys.update(effects)
    for key in dynamic_keys:
        effect = snapshot.dynamic_effect(key)
        if effect is Effect.ALLOW:
            granted.add(key)
        elif effect is Effect.DENY:
            granted.discard(key)

    for key, override in snapshot.overrides.items():
        if override:
            granted.add(key)
        else:
            granted.discard(key)

    return frozenset(granted)


def has_feature(actor: Actor, feature_key: str, snapshot: RuleSnapshot) -> bool:
    """Super-roles always pass; everyone else needs an enabled flag for their company."""
    if actor is None or not actor.is_authenticated:
        return False
    if is_super_role(actor.role):
        return True
    if actor.company_id is None:
        return False
    return bool(snapshot.features.get(feature_key, False))


def is_visible(actor: Actor, item_key: str, snapshot: RuleSnapshot) -> bool:
    """Menu item visibility for the actor's role; unconfigured items are visible."""
    if actor is None or not actor.is_authenticated:
        return False
    if is_super_role(actor.role):
        return True
    rule = snapshot.menu.get(item_key)
    return True if rule is None else rule.is_visible


@dataclass(frozen=True)
class MenuEntry:
    key: str
    label: str
    url: str
    icon: str
    heading: str
    sort_order: int


def build_menu(actor: Actor, snapshot: RuleSnapshot) -> List[MenuEntry]:
    """
    Ordered menu for an actor.

    An entry appears when it is visible for the actor's role, its feature
    (if any) is enabled, and the actor holds at least one of its
    permissions (if any). Entries are ordered by heading, then configured
    sort_order, then catalog order.
    """
    if actor is None or not actor.is_authenticated:
        return []

    heading_order = {heading.key: heading.sort_order for heading in DEFAULT_MENU_HEADINGS}
    entries = []
    for position, item in enumerate(DEFAULT_MENU_ITEMS):
        if not is_visible(actor, item.key, snapshot):
            continue
        if item.feature and not has_feature(actor, item.feature, snapshot):
            continue
        if item.permissions and not has_any_permission(actor, item.permissions, snapshot):
            continue

        rule = snapshot.menu.get(item.key) or MenuRule()
        heading = rule.heading or item.heading
        entry = MenuEntry(
            key=item.key,
            label=rule.custom_label or item.label,
            url=item.url,
            icon=rule.custom_icon or item.icon,
            heading=heading,
            sort_order=rule.sort_order,
        )
        entries.append((heading_order.get(heading, len(heading_order) * 10), rule.sort_order, position, entry))

    entries.sort(key=lambda row: row[:3])
    return [row[3] for row in entries]

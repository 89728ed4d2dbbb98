"""
Cardfolio — Configuration & Constants
======================================
All tuneable parameters, synonym tables, and classification tables live here.
Change a value once and it applies everywhere.

Every table is an immutable structure (tuples inside read-only mappings) built
once at import time. Matching code scans them in order with first-match-wins
semantics, so ORDER IS BEHAVIOUR: reordering an entry changes how ambiguous
headers and set names are classified.
"""

from types import MappingProxyType

# ── Canonical fields ──────────────────────────────────────────────────────────
FIELD_PRODUCT_NAME = 'productName'
FIELD_CATEGORY     = 'category'
FIELD_QUANTITY     = 'quantity'
FIELD_MARKET_PRICE = 'marketPrice'
FIELD_AVG_COST     = 'averageCostPaid'
FIELD_GRADE        = 'grade'
FIELD_CARD_NUMBER  = 'cardNumber'
FIELD_DATE_ADDED   = 'dateAdded'

CANONICAL_FIELDS = (
    FIELD_PRODUCT_NAME, FIELD_CATEGORY, FIELD_QUANTITY, FIELD_MARKET_PRICE,
    FIELD_AVG_COST, FIELD_GRADE, FIELD_CARD_NUMBER, FIELD_DATE_ADDED,
)

# Required for an import to proceed. The label is what users see in errors.
REQUIRED_FIELDS = MappingProxyType({
    FIELD_PRODUCT_NAME: 'Product Name',
    FIELD_QUANTITY:     'Quantity',
    FIELD_MARKET_PRICE: 'Market Price',
})

FIELD_LABELS = MappingProxyType({
    FIELD_PRODUCT_NAME: 'Product Name',
    FIELD_CATEGORY:     'Category',
    FIELD_QUANTITY:     'Quantity',
    FIELD_MARKET_PRICE: 'Market Price',
    FIELD_AVG_COST:     'Average Cost Paid',
    FIELD_GRADE:        'Grade',
    FIELD_CARD_NUMBER:  'Card Number',
    FIELD_DATE_ADDED:   'Date Added',
})

# ── Column synonym table ──────────────────────────────────────────────────────
# Pass 1 of column detection tries each phrase for an exact (case-insensitive)
# header match; pass 2 falls back to substring containment in either direction.
# Synonyms are tried in listed order in both passes.
COLUMN_SYNONYMS = MappingProxyType({
    FIELD_PRODUCT_NAME: ('product name', 'item name', 'card name', 'name',
                         'product', 'item', 'title', 'description'),
    FIELD_CATEGORY:     ('category', 'set', 'set name', 'series', 'collection',
                         'expansion', 'type'),
    FIELD_QUANTITY:     ('quantity', 'qty', 'count', 'amount', 'units', 'owned'),
    FIELD_MARKET_PRICE: ('market price', 'market value', 'tcgplayer price',
                         'tcg market price', 'current price', 'fmv',
                         'fair market value', 'price', 'value'),
    FIELD_AVG_COST:     ('average cost paid', 'avg cost', 'average cost', 'cost',
                         'purchase price', 'paid', 'cost basis', 'price paid'),
    FIELD_GRADE:        ('grade', 'condition', 'grading', 'psa', 'bgs', 'cgc'),
    FIELD_CARD_NUMBER:  ('card number', 'card #', 'card no', 'number', '#'),
    FIELD_DATE_ADDED:   ('date added', 'date', 'added', 'purchase date', 'acquired'),
})

# ── Sanitizer ─────────────────────────────────────────────────────────────────
# Characters stripped from numeric cells before parsing.
CURRENCY_SYMBOLS   = '$€£¥'
THOUSANDS_SEP      = ','
# Stripped values treated as zero rather than a parse failure.
EMPTY_NUMERIC_TOKENS = ('', '-')

# Category used when the row has none.
DEFAULT_CATEGORY = 'Uncategorized'

# ── Asset classification ──────────────────────────────────────────────────────
ASSET_SEALED = 'Sealed'
ASSET_SLAB   = 'Slab'
ASSET_RAW    = 'Raw Card'
ASSET_TYPES  = (ASSET_SEALED, ASSET_SLAB, ASSET_RAW)

# Grade values that mean "not graded" (compared lowercase, trimmed).
UNGRADED_TOKENS = frozenset({'ungraded', 'n/a', 'none'})

# ── Liquidity tiers ───────────────────────────────────────────────────────────
LIQUIDITY_HIGH   = 'High'
LIQUIDITY_MEDIUM = 'Medium'
LIQUIDITY_LOW    = 'Low'

# A raw card above this total value sells quickly.
RAW_HIGH_LIQUIDITY_VALUE = 50
# Sealed products with an established secondary market.
HIGH_DEMAND_SEALED = ('etb', 'elite trainer', 'booster box', 'bundle', 'collection box')
# Holding more than this many units of one row is hard to exit at market.
LOW_LIQUIDITY_QTY = 10
BULK_MARKERS      = ('bulk', 'lot')

# ── Eras ──────────────────────────────────────────────────────────────────────
ERA_VINTAGE      = 'vintage'
ERA_CLASSIC      = 'classic'
ERA_MODERN       = 'modern'
ERA_ULTRA_MODERN = 'ultra_modern'
ERA_CURRENT      = 'current'

ERAS = (ERA_VINTAGE, ERA_CLASSIC, ERA_MODERN, ERA_ULTRA_MODERN, ERA_CURRENT)
NEWER_ERAS = (ERA_MODERN, ERA_ULTRA_MODERN, ERA_CURRENT)
OLDER_ERAS = (ERA_VINTAGE, ERA_CLASSIC)

ERA_INFO = MappingProxyType({
    ERA_VINTAGE:      MappingProxyType({'name': 'Vintage',      'years': '1999-2003',
                                        'description': 'WotC and e-Card era'}),
    ERA_CLASSIC:      MappingProxyType({'name': 'Classic',      'years': '2003-2010',
                                        'description': 'EX, Diamond & Pearl, HeartGold & SoulSilver'}),
    ERA_MODERN:       MappingProxyType({'name': 'Modern',       'years': '2011-2019',
                                        'description': 'Black & White, XY, Sun & Moon'}),
    ERA_ULTRA_MODERN: MappingProxyType({'name': 'Ultra Modern', 'years': '2020+',
                                        'description': 'Sword & Shield, Scarlet & Violet'}),
    ERA_CURRENT:      MappingProxyType({'name': 'Current',      'years': 'Last 12 months',
                                        'description': 'Recently added, unproven holdings'}),
})

# Literal set names per era, scanned in this era order. `current` has no set
# list: it is a rolling date window, not a release period.
ERA_SETS = MappingProxyType({
    ERA_VINTAGE: (
        'base set', 'jungle', 'fossil', 'base set 2', 'team rocket',
        'gym heroes', 'gym challenge', 'neo genesis', 'neo discovery',
        'neo revelation', 'neo destiny', 'legendary collection',
        'southern islands', 'expedition', 'aquapolis', 'skyridge',
    ),
    ERA_CLASSIC: (
        'ruby & sapphire', 'sandstorm', 'ex dragon', 'team magma vs team aqua',
        'hidden legends', 'firered & leafgreen', 'team rocket returns',
        'ex deoxys', 'ex emerald', 'unseen forces', 'delta species',
        'legend maker', 'holon phantoms', 'crystal guardians',
        'dragon frontiers', 'power keepers', 'diamond & pearl',
        'mysterious treasures', 'secret wonders', 'great encounters',
        'majestic dawn', 'legends awakened', 'stormfront', 'rising rivals',
        'supreme victors', 'heartgold & soulsilver', 'hgss unleashed',
        'undaunted', 'triumphant', 'call of legends',
    ),
    ERA_MODERN: (
        'black & white', 'emerging powers', 'noble victories',
        'next destinies', 'dark explorers', 'dragons exalted',
        'boundaries crossed', 'plasma storm', 'plasma freeze', 'plasma blast',
        'legendary treasures', 'flashfire', 'furious fists', 'phantom forces',
        'primal clash', 'roaring skies', 'ancient origins', 'breakthrough',
        'breakpoint', 'fates collide', 'steam siege', 'evolutions',
        'generations', 'sun & moon', 'guardians rising', 'burning shadows',
        'shining legends', 'crimson invasion', 'ultra prism',
        'forbidden light', 'celestial storm', 'dragon majesty', 'lost thunder',
        'team up', 'unbroken bonds', 'unified minds', 'hidden fates',
        'cosmic eclipse',
    ),
    ERA_ULTRA_MODERN: (
        'sword & shield', 'rebel clash', 'darkness ablaze', "champion's path",
        'vivid voltage', 'shining fates', 'battle styles', 'chilling reign',
        'evolving skies', 'celebrations', 'fusion strike', 'brilliant stars',
        'astral radiance', 'pokemon go', 'lost origin', 'silver tempest',
        'crown zenith', 'scarlet & violet', 'paldea evolved',
        'obsidian flames', '151', 'paradox rift', 'paldean fates',
        'temporal forces', 'twilight masquerade', 'shrouded fable',
        'stellar crown', 'surging sparks', 'prismatic evolutions',
        'journey together', 'destined rivals',
    ),
})

# Broader keyword fallback, checked only when no set name matched.
# Era order here is load-bearing: vintage first, then classic, modern, ultra_modern.
ERA_KEYWORDS = MappingProxyType({
    ERA_VINTAGE:      ('base set', 'jungle', 'fossil', 'neo', 'expedition', 'skyridge',
                       'aquapolis', '1st edition', 'shadowless', 'wotc'),
    ERA_CLASSIC:      ('diamond', 'platinum', 'heartgold', 'soulsilver',
                       'black & white', 'plasma'),
    ERA_MODERN:       ('xy', 'sun & moon', 'hidden fates', 'evolutions',
                       'generations', 'shining legends'),
    ERA_ULTRA_MODERN: ('sword & shield', 'scarlet', 'violet', 'celebrations',
                       'evolving skies', '151', 'crown zenith', 'paldea', 'prismatic'),
})

# Items added within this many months count as `current` when nothing
# else identifies their era.
CURRENT_WINDOW_MONTHS = 12

# ── Import integrity ──────────────────────────────────────────────────────────
# Batch vs running total may drift by at most this fraction of the running sum.
INTEGRITY_TOLERANCE = 0.001

# ── Profit milestones ─────────────────────────────────────────────────────────
# Descending: an item is tagged with the highest threshold it has crossed.
MILESTONE_THRESHOLDS = (500, 300, 200)

# ── Health score model ────────────────────────────────────────────────────────
HEALTH_FLOOR   = 50
HEALTH_CEILING = 100

HEALTH_WEIGHT_ASSET         = 0.45
HEALTH_WEIGHT_ERA           = 0.35
HEALTH_WEIGHT_CONCENTRATION = 0.20

# Concentration curve band edges (percent of portfolio) for top-1/3/5 positions.
CONCENTRATION_BANDS = MappingProxyType({
    1: (10, 20, 30),
    3: (20, 35, 50),
    5: (30, 50, 70),
})
CONCENTRATION_WEIGHTS = MappingProxyType({1: 0.40, 3: 0.35, 5: 0.25})

# Sealed-percent tiers for the asset allocation score, highest first.
# Sealed-dominant portfolios score highest.
ASSET_SEALED_TIERS = ((70, 95), (55, 90), (40, 80), (25, 70))
ASSET_SEALED_BASE  = 60
ASSET_RAW_CAP      = 60   # raw > 60% and sealed < 40%
ASSET_SLAB_CAP     = 65   # slabs > 70% and sealed < 25%

HEALTH_GRADES = (
    (80, 'Excellent'),
    (65, 'Good'),
    (50, 'Fair'),
    (35, 'Needs Attention'),
)
HEALTH_GRADE_FLOOR = 'At Risk'

# ── Rebalancing & insights ────────────────────────────────────────────────────
REBALANCE_BAND_PCT          = 10
INSIGHT_ALLOCATION_GAP_PCT  = 15
INSIGHT_TOP1_PCT            = 20
INSIGHT_TOP3_PCT            = 40
INSIGHT_PATIENCE_DAYS       = 60
INSIGHT_REBALANCE_MIN_VALUE = 1000
INSIGHT_REBALANCE_MAX_AMOUNT = 1000
ALLOCATION_ON_TARGET_PCT    = 5
LOW_LIQUIDITY_WARN_PCT      = 30

# ── Strengths / areas to watch ────────────────────────────────────────────────
STRONG_RETURN_PCT     = 20
WEAK_RETURN_PCT       = -10
HIGH_WIN_RATE_PCT     = 70
LOW_WIN_RATE_PCT      = 50
DIVERSIFIED_TOP1_PCT  = 15
HIGH_TOP1_PCT         = 25
MODERATE_TOP1_PCT     = 20
DIVERSE_SET_COUNT     = 5
DEEP_LOSS_PCT         = -30
ALLOCATION_OFF_PCT    = 20

# Plan rows move less than this many dollars are neither over- nor underweight.
REBALANCE_PLAN_DEADBAND = 100
DEFAULT_MONTHLY_BUDGET  = 500
DEFAULT_TARGET_MONTHS   = 6
CONTRIBUTION_PRESETS    = (250, 500, 1000, 2500)
TIMELINE_PRESETS        = (3, 6, 12)

# Trading frequency thresholds (additions per 30 days).
FREQUENCY_HIGH   = 10
FREQUENCY_MEDIUM = 3

# Era health warning thresholds.
ERA_CURRENT_HIGH_PCT = 10
ERA_NEWER_LOW_PCT    = 45
ERA_NEWER_HIGH_PCT   = 55
ERA_OLDER_LOW_PCT    = 30

# ── Allocation targets ────────────────────────────────────────────────────────
ALLOCATION_KEYS = ('sealed', 'slabs', 'raw_cards')
ALLOCATION_LABELS = MappingProxyType({
    'sealed':    'sealed products',
    'slabs':     'graded cards',
    'raw_cards': 'raw cards',
})
# Asset type → allocation bucket key.
ASSET_BUCKETS = MappingProxyType({
    ASSET_SEALED: 'sealed',
    ASSET_SLAB:   'slabs',
    ASSET_RAW:    'raw_cards',
})

ALLOCATION_PRESETS = MappingProxyType({
    'conservative': MappingProxyType({'sealed': 70, 'slabs': 20, 'raw_cards': 10}),
    'balanced':     MappingProxyType({'sealed': 50, 'slabs': 30, 'raw_cards': 20}),
    'aggressive':   MappingProxyType({'sealed': 25, 'slabs': 30, 'raw_cards': 45}),
    'custom':       MappingProxyType({'sealed': 33, 'slabs': 34, 'raw_cards': 33}),
})
ALLOCATION_PRESET_INFO = MappingProxyType({
    'conservative': ('The Investor', '70/20/10'),
    'balanced':     ('The Hybrid Collector-Investor', '50/30/20'),
    'aggressive':   ('The Purist', '25/30/45'),
    'custom':       ('Custom', 'Your mix'),
})
DEFAULT_ALLOCATION_PRESET = 'balanced'

ERA_PRESETS = MappingProxyType({
    'conservative': MappingProxyType({ERA_VINTAGE: 30, ERA_CLASSIC: 25, ERA_MODERN: 20,
                                      ERA_ULTRA_MODERN: 20, ERA_CURRENT: 5}),
    'balanced':     MappingProxyType({ERA_VINTAGE: 20, ERA_CLASSIC: 20, ERA_MODERN: 25,
                                      ERA_ULTRA_MODERN: 25, ERA_CURRENT: 10}),
    'aggressive':   MappingProxyType({ERA_VINTAGE: 10, ERA_CLASSIC: 15, ERA_MODERN: 25,
                                      ERA_ULTRA_MODERN: 35, ERA_CURRENT: 15}),
    'custom':       MappingProxyType({ERA_VINTAGE: 20, ERA_CLASSIC: 20, ERA_MODERN: 20,
                                      ERA_ULTRA_MODERN: 30, ERA_CURRENT: 10}),
})
DEFAULT_ERA_PRESET = 'balanced'

TARGET_TOTAL = 100

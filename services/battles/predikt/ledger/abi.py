# FrameBattles ABI subset used by the client.

_BATTLE_FIELDS = [
    {"name": "id", "type": "uint256"},
    {"name": "prediction", "type": "string"},
    {"name": "description", "type": "string"},
    {"name": "stakeAmount", "type": "uint256"},
    {"name": "challenger", "type": "address"},
    {"name": "opponent", "type": "address"},
    {"name": "endTime", "type": "uint256"},
    {"name": "status", "type": "uint8"},
    {"name": "winner", "type": "address"},
    {"name": "createdAt", "type": "uint256"},
    {"name": "challengerSaysYes", "type": "bool"},
]

_USER_STATS_FIELDS = [
    {"name": "totalBattles", "type": "uint256"},
    {"name": "wins", "type": "uint256"},
    {"name": "losses", "type": "uint256"},
    {"name": "totalStaked", "type": "uint256"},
    {"name": "totalWinnings", "type": "uint256"},
]

FRAME_BATTLES_ABI = [
    {
        "type": "function",
        "name": "battles",
        "stateMutability": "view",
        "inputs": [{"name": "", "type": "uint256"}],
        "outputs": _BATTLE_FIELDS,
    },
    {
        "type": "function",
        "name": "getBattle",
        "stateMutability": "view",
        "inputs": [{"name": "_battleId", "type": "uint256"}],
        "outputs": _BATTLE_FIELDS,
    },
    {
        "type": "function",
        "name": "getAllBattles",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "tuple[]", "components": _BATTLE_FIELDS}],
    },
    {
        "type": "function",
        "name": "getUserBattles",
        "stateMutability": "view",
        "inputs": [{"name": "_user", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256[]"}],
    },
    {
        "type": "function",
        "name": "getUserStats",
        "stateMutability": "view",
        "inputs": [{"name": "_user", "type": "address"}],
        "outputs": [{"name": "", "type": "tuple", "components": _USER_STATS_FIELDS}],
    },
    {
        "type": "function",
        "name": "getBattlesCount",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "getLeaderboard",
        "stateMutability": "view",
        "inputs": [{"name": "_limit", "type": "uint256"}],
        "outputs": [
            {"name": "", "type": "address[]"},
            {"name": "", "type": "tuple[]", "components": _USER_STATS_FIELDS},
        ],
    },
    {
        "type": "function",
        "name": "platformFee",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "paused",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "type": "function",
        "name": "createBattle",
        "stateMutability": "payable",
        "inputs": [
            {"name": "_prediction", "type": "string"},
            {"name": "_description", "type": "string"},
            {"name": "_endTime", "type": "uint256"},
            {"name": "_challengerSaysYes", "type": "bool"},
            {"name": "_specificOpponent", "type": "address"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "acceptBattle",
        "stateMutability": "payable",
        "inputs": [{"name": "_battleId", "type": "uint256"}],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "resolveBattle",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "_battleId", "type": "uint256"},
            {"name": "_predictionCameTrue", "type": "bool"},
        ],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "cancelBattle",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "_battleId", "type": "uint256"}],
        "outputs": [],
    },
    {
        "type": "event",
        "name": "BattleCreated",
        "anonymous": False,
        "inputs": [
            {"name": "battleId", "type": "uint256", "indexed": True},
            {"name": "challenger", "type": "address", "indexed": True},
            {"name": "prediction", "type": "string", "indexed": False},
            {"name": "stakeAmount", "type": "uint256", "indexed": False},
            {"name": "endTime", "type": "uint256", "indexed": False},
        ],
    },
    {
        "type": "event",
        "name": "BattleAccepted",
        "anonymous": False,
        "inputs": [
            {"name": "battleId", "type": "uint256", "indexed": True},
            {"name": "opponent", "type": "address", "indexed": True},
        ],
    },
    {
        "type": "event",
        "name": "BattleResolved",
        "anonymous": False,
        "inputs": [
            {"name": "battleId", "type": "uint256", "indexed": True},
            {"name": "winner", "type": "address", "indexed": True},
            {"name": "payout", "type": "uint256", "indexed": False},
        ],
    },
    {
        "type": "event",
        "name": "BattleCancelled",
        "anonymous": False,
        "inputs": [
            {"name": "battleId", "type": "uint256", "indexed": True},
        ],
    },
]

BATTLE_EVENTS = ("BattleCreated", "BattleAccepted", "BattleResolved", "BattleCancelled")

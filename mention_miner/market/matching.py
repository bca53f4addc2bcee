"""
Coin name -> CoinGecko market entry matching

比對順序 (先命中者勝)：
1. 主流幣的直接對照表
2. 完全相符 (id / symbol / 去掉 dash 的 id)
3. 子字串模糊比對
"""

import re
from typing import Any, Dict, List, Optional


# 主流幣直接對照 (normalized name -> CoinGecko id)
DIRECT_MAPPINGS = {
    'bitcoin': 'bitcoin',
    'btc': 'bitcoin',
    'ethereum': 'ethereum',
    'eth': 'ethereum',
    'solana': 'solana',
    'sol': 'solana',
    'xrp': 'ripple',
    'ripple': 'ripple',
    'doge': 'dogecoin',
    'dogecoin': 'dogecoin',
    'cardano': 'cardano',
    'ada': 'cardano',
    'polkadot': 'polkadot',
    'dot': 'polkadot',
    'chainlink': 'chainlink',
    'link': 'chainlink',
}

_NON_ALNUM = re.compile(r'[^a-z0-9]')


def normalize_symbol(name: str) -> str:
    """小寫並移除非英數字元 ("Shiba Inu" -> "shibainu")"""
    return _NON_ALNUM.sub('', name.lower())


def find_coin_match(name: str, markets: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """
    找出 coin 名稱對應的 market entry

    Args:
        name: 影片中提到的 coin/project 名稱
        markets: CoinGecko /coins/markets 回傳的 entries

    Returns:
        market entry 或 None (沒有對應不是錯誤)
    """
    normalized = normalize_symbol(name)
    if not normalized:
        return None

    # 1. Direct mapping
    mapped_id = DIRECT_MAPPINGS.get(normalized)
    if mapped_id:
        for coin in markets:
            if coin.get('id') == mapped_id:
                return coin

    # 2. Exact match
    for coin in markets:
        coin_id = str(coin.get('id', ''))
        symbol = str(coin.get('symbol', '')).lower()
        if normalized in (coin_id, symbol, coin_id.replace('-', '')):
            return coin

    # 3. Fuzzy (substring) match
    for coin in markets:
        coin_id = str(coin.get('id', ''))
        symbol = str(coin.get('symbol', '')).lower()
        if (normalized in coin_id or normalized in symbol or
                normalized in coin_id.replace('-', '')):
            return coin

    return None

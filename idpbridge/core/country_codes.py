"""
国际电话区号 -> ISO 3166-1 alpha-2 国家代码
"""

from __future__ import annotations

from typing import Union

# 未知区号统一回退到中国（多数接入平台为国内平台，手机号缺省区号时即为 +86）
DEFAULT_COUNTRY_CODE = "CN"

CALLING_CODE_TO_ISO: dict[str, str] = {
    # 东亚
    "86": "CN",
    "852": "HK",
    "853": "MO",
    "886": "TW",
    "81": "JP",
    "82": "KR",
    # 北美 / 拉美
    "1": "US",
    "52": "MX",
    "55": "BR",
    # 欧洲
    "44": "GB",
    "33": "FR",
    "49": "DE",
    "39": "IT",
    "7": "RU",
    "34": "ES",
    "31": "NL",
    "46": "SE",
    "47": "NO",
    "45": "DK",
    "358": "FI",
    "41": "CH",
    "43": "AT",
    "32": "BE",
    "351": "PT",
    "30": "GR",
    "48": "PL",
    "420": "CZ",
    "36": "HU",
    "40": "RO",
    "359": "BG",
    "385": "HR",
    "386": "SI",
    "421": "SK",
    "372": "EE",
    "371": "LV",
    "370": "LT",
    "353": "IE",
    "354": "IS",
    "352": "LU",
    "377": "MC",
    "378": "SM",
    "39066": "VA",
    "376": "AD",
    "350": "GI",
    "356": "MT",
    "357": "CY",
    "90": "TR",
    # 大洋洲
    "61": "AU",
    # 中东 / 南亚
    "972": "IL",
    "971": "AE",
    "966": "SA",
    "965": "KW",
    "974": "QA",
    "973": "BH",
    "968": "OM",
    "962": "JO",
    "961": "LB",
    "963": "SY",
    "964": "IQ",
    "98": "IR",
    "93": "AF",
    "92": "PK",
    "91": "IN",
    "880": "BD",
    "94": "LK",
    # 东南亚
    "95": "MM",
    "66": "TH",
    "84": "VN",
    "855": "KH",
    "856": "LA",
    "60": "MY",
    "65": "SG",
    "62": "ID",
    "63": "PH",
    "673": "BN",
    "670": "TL",
    # 非洲
    "20": "EG",
    "27": "ZA",
    "234": "NG",
    "254": "KE",
    "233": "GH",
    "212": "MA",
    "213": "DZ",
    "216": "TN",
    "218": "LY",
    "249": "SD",
    "251": "ET",
    "256": "UG",
    "255": "TZ",
    "250": "RW",
    "257": "BI",
    "243": "CD",
    "242": "CG",
    "236": "CF",
    "235": "TD",
    "237": "CM",
    "240": "GQ",
    "241": "GA",
    "239": "ST",
    "238": "CV",
    "245": "GW",
    "224": "GN",
    "221": "SN",
    "223": "ML",
    "226": "BF",
    "227": "NE",
    "229": "BJ",
    "228": "TG",
    "225": "CI",
    "231": "LR",
    "232": "SL",
    "220": "GM",
}


def calling_code_to_iso(calling_code: Union[str, int, None]) -> str:
    """
    将电话区号转换为 ISO 国家代码。

    全函数：未收录的区号（包括空值）返回 DEFAULT_COUNTRY_CODE，调用方可以认为结果总是存在。
    允许带前导 "+" 或空白，如 "+86"。
    """
    if calling_code is None or calling_code == "":
        return DEFAULT_COUNTRY_CODE
    normalized = str(calling_code).strip().lstrip("+")
    return CALLING_CODE_TO_ISO.get(normalized, DEFAULT_COUNTRY_CODE)

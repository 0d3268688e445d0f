TRANSLATIONS = {
    "zh": {},
    "en": {
        "中国": "China",
        "日本": "Japan",
        "韩国": "South Korea",
        "美国": "United States",
        "加拿大": "Canada",
        "英国": "United Kingdom",
        "法国": "France",
        "德国": "Germany",
        "澳大利亚": "Australia",
        "新西兰": "New Zealand",
        "新加坡": "Singapore",
        "马来西亚": "Malaysia",
        "泰国": "Thailand",
        "越南": "Vietnam",
        "菲律宾": "Philippines",
        "印度尼西亚": "Indonesia",
        "俄罗斯": "Russia",
        "其他": "Other",
        "未知": "Unknown",
        "北京": "Beijing",
        "天津": "Tianjin",
        "上海": "Shanghai",
        "重庆": "Chongqing",
        "河北": "Hebei",
        "山西": "Shanxi",
        "辽宁": "Liaoning",
        "吉林": "Jilin",
        "黑龙江": "Heilongjiang",
        "江苏": "Jiangsu",
        "浙江": "Zhejiang",
        "安徽": "Anhui",
        "福建": "Fujian",
        "江西": "Jiangxi",
        "山东": "Shandong",
        "河南": "Henan",
        "湖北": "Hubei",
        "湖南": "Hunan",
        "广东": "Guangdong",
        "海南": "Hainan",
        "四川": "Sichuan",
        "贵州": "Guizhou",
        "云南": "Yunnan",
        "陕西": "Shaanxi",
        "甘肃": "Gansu",
        "青海": "Qinghai",
        "台湾": "Taiwan",
        "内蒙古": "Inner Mongolia",
        "广西": "Guangxi",
        "西藏": "Tibet",
        "宁夏": "Ningxia",
        "新疆": "Xinjiang",
        "香港": "Hong Kong",
        "澳门": "Macau",
    },
    "ja": {
        "中国": "中国",
        "日本": "日本",
        "韩国": "韓国",
        "美国": "アメリカ",
        "加拿大": "カナダ",
        "英国": "イギリス",
        "法国": "フランス",
        "德国": "ドイツ",
        "澳大利亚": "オーストラリア",
        "新西兰": "ニュージーランド",
        "新加坡": "シンガポール",
        "马来西亚": "マレーシア",
        "泰国": "タイ",
        "越南": "ベトナム",
        "菲律宾": "フィリピン",
        "印度尼西亚": "インドネシア",
        "俄罗斯": "ロシア",
        "其他": "その他",
        "未知": "不明",
        "香港": "香港",
        "澳门": "マカオ",
        "台湾": "台湾",
    },
}

def get_translations(lang: str = "zh") -> dict:
    # "en-US" -> "en"; unsupported languages fall back to the canonical names
    lang = (lang or "zh").split("-")[0].lower()
    return TRANSLATIONS.get(lang, TRANSLATIONS["zh"])

def region_label(name: str, lang: str = "zh") -> str:
    return get_translations(lang).get(name, name)

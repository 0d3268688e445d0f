"""
Canonical region names for member locations.

Geocoding providers disagree on almost everything: Amap answers in Chinese
with administrative suffixes and uses ``[]`` for "no value", Nominatim answers
in whatever language it was asked with free-form ``state``/``city`` fields, the
IP locator answers in English. Everything that is stored or aggregated goes
through this module first, so downstream code only ever sees names from a
fixed vocabulary.

Rules:
  - missing or empty input becomes ``UNKNOWN`` (never ``""``);
  - an unrecognized country becomes ``OTHER``;
  - a province that belongs to China forces the country to ``CHINA``;
  - every normalizer is idempotent and never raises.
"""

import re
from typing import Iterable, List, Optional, Tuple, Union

import structlog

from membermap.models.dto import ProviderField, Region, RegionStat

logger = structlog.get_logger(__name__)

UNKNOWN = "未知"
OTHER = "其他"
CHINA = "中国"

# Province -> prefecture-level cities, as offered by the manual location picker.
CHINA_REGIONS = {
    '北京': ['北京'],
    '天津': ['天津'],
    '上海': ['上海'],
    '重庆': ['重庆'],
    '河北': ['石家庄', '唐山', '秦皇岛', '邯郸', '邢台', '保定', '张家口', '承德', '沧州', '廊坊', '衡水'],
    '山西': ['太原', '大同', '阳泉', '长治', '晋城', '朔州', '晋中', '运城', '忻州', '临汾', '吕梁'],
    '辽宁': ['沈阳', '大连', '鞍山', '抚顺', '本溪', '丹东', '锦州', '营口', '阜新', '辽阳', '盘锦', '铁岭', '朝阳', '葫芦岛'],
    '吉林': ['长春', '吉林', '四平', '辽源', '通化', '白山', '松原', '白城', '延边'],
    '黑龙江': ['哈尔滨', '齐齐哈尔', '鸡西', '鹤岗', '双鸭山', '大庆', '伊春', '佳木斯', '七台河', '牡丹江', '黑河', '绥化', '大兴安岭'],
    '江苏': ['南京', '无锡', '徐州', '常州', '苏州', '南通', '连云港', '淮安', '盐城', '扬州', '镇江', '泰州', '宿迁'],
    '浙江': ['杭州', '宁波', '温州', '嘉兴', '湖州', '绍兴', '金华', '衢州', '舟山', '台州', '丽水'],
    '安徽': ['合肥', '芜湖', '蚌埠', '淮南', '马鞍山', '淮北', '铜陵', '安庆', '黄山', '滁州', '阜阳', '宿州', '六安', '亳州', '池州', '宣城'],
    '福建': ['福州', '厦门', '莆田', '三明', '泉州', '漳州', '南平', '龙岩', '宁德'],
    '江西': ['南昌', '景德镇', '萍乡', '九江', '新余', '鹰潭', '赣州', '吉安', '宜春', '抚州', '上饶'],
    '山东': ['济南', '青岛', '淄博', '枣庄', '东营', '烟台', '潍坊', '济宁', '泰安', '威海', '日照', '临沂', '德州', '聊城', '滨州', '菏泽'],
    '河南': ['郑州', '开封', '洛阳', '平顶山', '安阳', '鹤壁', '新乡', '焦作', '濮阳', '许昌', '漯河', '三门峡', '南阳', '商丘', '信阳', '周口', '驻马店'],
    '湖北': ['武汉', '黄石', '十堰', '宜昌', '襄阳', '鄂州', '荆门', '孝感', '荆州', '黄冈', '咸宁', '随州', '恩施', '仙桃', '潜江', '天门', '神农架'],
    '湖南': ['长沙', '株洲', '湘潭', '衡阳', '邵阳', '岳阳', '常德', '张家界', '益阳', '郴州', '永州', '怀化', '娄底', '湘西'],
    '广东': ['广州', '韶关', '深圳', '珠海', '汕头', '佛山', '江门', '湛江', '茂名', '肇庆', '惠州', '梅州', '汕尾', '河源', '阳江', '清远', '东莞', '中山', '潮州', '揭阳', '云浮'],
    '海南': ['海口', '三亚', '三沙', '儋州'],
    '四川': ['成都', '自贡', '攀枝花', '泸州', '德阳', '绵阳', '广元', '遂宁', '内江', '乐山', '南充', '眉山', '宜宾', '广安', '达州', '雅安', '巴中', '资阳', '阿坝', '甘孜', '凉山'],
    '贵州': ['贵阳', '六盘水', '遵义', '安顺', '毕节', '铜仁', '黔西南', '黔东南', '黔南'],
    '云南': ['昆明', '曲靖', '玉溪', '保山', '昭通', '丽江', '普洱', '临沧', '楚雄', '红河', '文山', '西双版纳', '大理', '德宏', '怒江', '迪庆'],
    '陕西': ['西安', '铜川', '宝鸡', '咸阳', '渭南', '延安', '汉中', '榆林', '安康', '商洛'],
    '甘肃': ['兰州', '嘉峪关', '金昌', '白银', '天水', '武威', '张掖', '平凉', '酒泉', '庆阳', '定西', '陇南', '临夏', '甘南'],
    '青海': ['西宁', '海东', '海北', '黄南', '海南', '果洛', '玉树', '海西'],
    '台湾': ['台北', '高雄', '台中', '台南', '新北', '桃园'],
    '内蒙古': ['呼和浩特', '包头', '乌海', '赤峰', '通辽', '鄂尔多斯', '呼伦贝尔', '巴彦淖尔', '乌兰察布', '兴安', '锡林郭勒', '阿拉善'],
    '广西': ['南宁', '柳州', '桂林', '梧州', '北海', '防城港', '钦州', '贵港', '玉林', '百色', '贺州', '河池', '来宾', '崇左'],
    '西藏': ['拉萨', '日喀则', '昌都', '林芝', '山南', '那曲', '阿里'],
    '宁夏': ['银川', '石嘴山', '吴忠', '固原', '中卫'],
    '新疆': ['乌鲁木齐', '克拉玛依', '吐鲁番', '哈密', '昌吉', '博尔塔拉', '巴音郭楞', '阿克苏', '克孜勒苏', '喀什', '和田', '伊犁', '塔城', '阿勒泰'],
    '香港': ['香港'],
    '澳门': ['澳门'],
}

CHINESE_PROVINCES = frozenset(CHINA_REGIONS)

# Direct-administered municipalities: the province is also the city.
DIRECT_MUNICIPALITIES = frozenset({'北京', '上海', '天津', '重庆'})

COUNTRIES = [
    '中国', '日本', '韩国', '美国', '加拿大', '英国', '法国', '德国', '澳大利亚',
    '新西兰', '新加坡', '马来西亚', '泰国', '越南', '菲律宾', '印度尼西亚', '俄罗斯', OTHER,
]

_NULLISH = frozenset({UNKNOWN.casefold(), "unknown", "null", "none", "undefined", "n/a"})

# Longest first so "壮族自治区" is removed as a unit before "区"-less leftovers.
_PROVINCE_SUFFIXES = (
    "特别行政区", "维吾尔自治区", "壮族自治区", "回族自治区", "自治区",
    "维吾尔", "壮族", "回族", "省", "市",
)
_CITY_SUFFIXES = ("自治州", "地区", "市", "区", "县")

_ENGLISH_SUFFIXES = (
    " special administrative region", " autonomous region", " zizhiqu",
    " zhuang", " hui", " uygur", " uyghur", " uighur",
    " province", " municipality", " sar", " sheng", " shi",
)

_PROVINCE_ALIASES = {
    "beijing": "北京", "tianjin": "天津", "shanghai": "上海", "chongqing": "重庆",
    "hebei": "河北", "shanxi": "山西", "liaoning": "辽宁", "jilin": "吉林",
    "heilongjiang": "黑龙江", "jiangsu": "江苏", "zhejiang": "浙江", "anhui": "安徽",
    "fujian": "福建", "jiangxi": "江西", "shandong": "山东", "henan": "河南",
    "hubei": "湖北", "hunan": "湖南", "guangdong": "广东", "hainan": "海南",
    "sichuan": "四川", "guizhou": "贵州", "yunnan": "云南", "shaanxi": "陕西",
    "gansu": "甘肃", "qinghai": "青海", "taiwan": "台湾",
    "inner mongolia": "内蒙古", "nei mongol": "内蒙古", "neimenggu": "内蒙古",
    "guangxi": "广西", "tibet": "西藏", "xizang": "西藏", "ningxia": "宁夏",
    "xinjiang": "新疆", "hong kong": "香港", "hongkong": "香港",
    "macau": "澳门", "macao": "澳门",
    # traditional script
    "廣東": "广东", "廣西": "广西", "臺灣": "台湾", "台灣": "台湾", "澳門": "澳门",
}

_COUNTRY_ALIASES = {
    "中国": ["china", "prc", "cn", "people's republic of china", "中华人民共和国", "中國", "中国大陆"],
    "日本": ["japan", "jp", "日本国", "nippon"],
    "韩国": ["south korea", "korea", "republic of korea", "kr", "대한민국", "한국", "韓國", "大韩民国"],
    "美国": ["united states", "united states of america", "usa", "us", "america", "美利坚合众国"],
    "加拿大": ["canada"],
    "英国": ["united kingdom", "uk", "gb", "great britain", "britain", "england"],
    "法国": ["france"],
    "德国": ["germany", "deutschland"],
    "澳大利亚": ["australia"],
    "新西兰": ["new zealand"],
    "新加坡": ["singapore"],
    "马来西亚": ["malaysia"],
    "泰国": ["thailand", "ประเทศไทย"],
    "越南": ["vietnam", "viet nam", "việt nam"],
    "菲律宾": ["philippines"],
    "印度尼西亚": ["indonesia"],
    "俄罗斯": ["russia", "russian federation", "россия"],
}
_COUNTRY_LOOKUP = {
    alias: canonical
    for canonical, aliases in _COUNTRY_ALIASES.items()
    for alias in aliases
}

# Providers sometimes report these regions in the country field.
_REGION_COUNTRIES = {
    "hong kong": "香港", "香港": "香港", "hong kong sar": "香港",
    "macau": "澳门", "macao": "澳门", "澳门": "澳门", "澳門": "澳门",
    "taiwan": "台湾", "台湾": "台湾", "臺灣": "台湾",
}

# English municipality names double as city names.
_MUNICIPALITY_KEYS = frozenset({"beijing", "shanghai", "tianjin", "chongqing"})

_CHINA_WORD = re.compile(r"\bchina\b")


def _collapse(value: Union[ProviderField, object]) -> str:
    """Collapse a provider field (scalar, list or missing) into one trimmed string."""
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        for item in value:
            text = _collapse(item)
            if text:
                return text
        return ""
    return " ".join(str(value).split())


def _strip_suffixes(text: str, suffixes: Tuple[str, ...]) -> str:
    # Repeat until stable so the result is a fixed point.
    changed = True
    while changed:
        changed = False
        for suffix in suffixes:
            if text.endswith(suffix) and len(text) > len(suffix):
                text = text[: -len(suffix)].strip()
                changed = True
                break
    return text


def _lookup_key(text: str) -> str:
    key = " ".join(text.casefold().replace("-", " ").replace("_", " ").split())
    return _strip_suffixes(key, _ENGLISH_SUFFIXES)


def _is_nullish(text: str) -> bool:
    return not text or text.casefold() in _NULLISH or _lookup_key(text) in _NULLISH


def normalize_country(raw: ProviderField) -> str:
    text = _collapse(raw)
    if _is_nullish(text):
        return UNKNOWN
    if text in COUNTRIES:
        return text

    key = _lookup_key(text)
    canonical = _COUNTRY_LOOKUP.get(text) or _COUNTRY_LOOKUP.get(key)
    if canonical:
        return canonical
    if key in _REGION_COUNTRIES or text in _REGION_COUNTRIES:
        return CHINA
    if "中国" in text or _CHINA_WORD.search(key):
        return CHINA
    return OTHER


def normalize_province(raw: ProviderField) -> str:
    text = _collapse(raw)
    if _is_nullish(text):
        return UNKNOWN

    stripped = _strip_suffixes(text, _PROVINCE_SUFFIXES)
    # "Unknown省" must not survive as "Unknown"
    if _is_nullish(stripped):
        return UNKNOWN
    if stripped in CHINESE_PROVINCES:
        return stripped
    return (
        _PROVINCE_ALIASES.get(stripped)
        or _PROVINCE_ALIASES.get(_lookup_key(stripped))
        or stripped
    )


def normalize_city(raw: ProviderField) -> str:
    text = _collapse(raw)
    if _is_nullish(text):
        return UNKNOWN
    stripped = _strip_suffixes(text, _CITY_SUFFIXES)
    if _is_nullish(stripped):
        return UNKNOWN
    key = _lookup_key(stripped)
    if key in _MUNICIPALITY_KEYS:
        return _PROVINCE_ALIASES[key]
    return stripped


def is_chinese_province(province: ProviderField) -> bool:
    return normalize_province(province) in CHINESE_PROVINCES


def normalize_region(
    country: ProviderField,
    province: ProviderField,
    city: ProviderField = None,
    district: ProviderField = None,
) -> Region:
    """
    Normalize a full country/province/city tuple and reconcile the parts.

    A recognized Chinese province overrides whatever the provider put in the
    country field (reverse geocoders mislabel or omit it for municipalities).
    """
    normalized_country = normalize_country(country)
    normalized_province = normalize_province(province)
    normalized_city = normalize_city(city)

    if normalized_province == UNKNOWN:
        region_name = _REGION_COUNTRIES.get(_lookup_key(_collapse(country)))
        if region_name:
            normalized_province = region_name

    if normalized_province in CHINESE_PROVINCES and normalized_country != CHINA:
        logger.debug(
            "region_country_corrected",
            raw_country=_collapse(country),
            country=normalized_country,
            province=normalized_province,
        )
        normalized_country = CHINA

    if normalized_province in DIRECT_MUNICIPALITIES and normalized_city == UNKNOWN:
        normalized_city = normalized_province

    normalized_district = normalize_city(district) if _collapse(district) else None

    return Region(
        country=normalized_country,
        province=normalized_province,
        city=normalized_city,
        district=normalized_district,
    )


def merge_region_stats(stats: Iterable[Union[RegionStat, dict]]) -> List[RegionStat]:
    """Normalize region stats and sum the ones that collapse to the same region."""
    merged = {}
    for stat in stats:
        if not isinstance(stat, RegionStat):
            stat = RegionStat.model_validate(stat)
        region = normalize_region(stat.country, stat.province)
        key = (region.country, region.province)
        if key in merged:
            merged[key].count += stat.count
        else:
            merged[key] = RegionStat(
                country=region.country,
                province=region.province,
                count=stat.count,
            )
    return list(merged.values())


def cities_of(province: Optional[str]) -> List[str]:
    return list(CHINA_REGIONS.get(normalize_province(province), []))

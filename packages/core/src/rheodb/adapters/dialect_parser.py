"""
SQL方言处理 - 参数占位符归一化与便捷语句构建
调用方可以使用 ?、$1、%s、:name、%(name)s 任意一种占位符，
由适配器按目标驱动的占位符风格重写，管理器不参与
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

Params = Union[Sequence[Any], Mapping[str, Any], None]


class DataDialect(Enum):
    """数据库方言枚举"""
    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"
    MYSQL = "mysql"


@dataclass(frozen=True)
class DialectFeatures:
    """方言特性"""
    placeholder: str            # 目标驱动的占位符风格
    quote_character: str
    supports_returning: bool
    escape_percent: bool        # pyformat驱动需要把所有字面量 % 写成 %%（包括字符串内）


DIALECT_FEATURES: Dict[DataDialect, DialectFeatures] = {
    DataDialect.SQLITE: DialectFeatures("?", '"', True, False),
    DataDialect.POSTGRESQL: DialectFeatures("$", '"', True, False),
    DataDialect.MYSQL: DialectFeatures("%s", "`", False, True),
}

# 字符串字面量、带引号的标识符、注释和 :: 类型转换都原样跳过
_TOKEN = re.compile(
    r"""
      (?P<skip>'(?:[^']|'')*'|"(?:[^"]|"")*"|`[^`]*`|--[^\n]*|/\*.*?\*/|::)
    | (?P<numeric>\$(?P<num>\d+))
    | (?P<pyformat>%\((?P<pyname>[A-Za-z_][A-Za-z0-9_]*)\)s)
    | (?P<format>%s)
    | (?P<percent>%)
    | (?P<named>(?<![:\w]):(?P<name>[A-Za-z_][A-Za-z0-9_]*))
    | (?P<qmark>\?)
    """,
    re.VERBOSE | re.DOTALL,
)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_$]*$")


class SQLDialectParser:
    """
    绑定到单一方言的SQL处理器

    核心功能：
    1. 占位符归一化（normalize）
    2. 标识符校验与引用（quote_identifier）
    3. select/insert/update/delete/upsert 语句构建
    """

    def __init__(self, dialect: DataDialect):
        self.dialect = dialect
        self.features = DIALECT_FEATURES[dialect]

    # ── 占位符归一化 ──────────────────────────────────────────

    def normalize(self, sql: str, params: Params = None) -> Tuple[str, List[Any]]:
        """
        把任意占位符风格的SQL重写为目标方言的风格

        Args:
            sql: 原始SQL
            params: 位置参数序列、命名参数映射或None

        Returns:
            (重写后的SQL, 按顺序排列的参数列表)

        Raises:
            ValueError: 占位符风格混用、参数数量不匹配或缺少命名参数
        """
        named_params = isinstance(params, Mapping)
        positional: Sequence[Any] = () if params is None or named_params else list(params)
        mapping: Mapping[str, Any] = params if named_params else {}

        args: List[Any] = []
        styles = set()
        sequential_index = 0
        numeric_slots: Dict[int, int] = {}
        named_slots: Dict[str, int] = {}

        def emit(value: Any, slot_key: Optional[Tuple[str, Any]] = None) -> str:
            # PostgreSQL 的 $n 可以重复引用同一个参数
            if self.features.placeholder == "$":
                if slot_key is not None:
                    kind, key = slot_key
                    slots = numeric_slots if kind == "numeric" else named_slots
                    if key in slots:
                        return f"${slots[key]}"
                    args.append(value)
                    slots[key] = len(args)
                    return f"${len(args)}"
                args.append(value)
                return f"${len(args)}"
            args.append(value)
            return self.features.placeholder

        def replace(match: "re.Match[str]") -> str:
            nonlocal sequential_index
            kind = match.lastgroup

            if match.group("skip") is not None:
                text = match.group(0)
                return text.replace("%", "%%") if self.features.escape_percent else text

            if match.group("percent") is not None:
                return "%%" if self.features.escape_percent else "%"

            if match.group("qmark") is not None or match.group("format") is not None:
                styles.add("positional")
                if named_params:
                    raise ValueError("positional placeholder used with named parameters")
                if sequential_index >= len(positional):
                    raise ValueError(
                        f"not enough parameters: statement expects more than {len(positional)}"
                    )
                value = positional[sequential_index]
                sequential_index += 1
                return emit(value)

            if match.group("numeric") is not None:
                styles.add("numeric")
                if named_params:
                    raise ValueError("numeric placeholder used with named parameters")
                index = int(match.group("num"))
                if index < 1 or index > len(positional):
                    raise ValueError(f"placeholder ${index} has no matching parameter")
                return emit(positional[index - 1], ("numeric", index))

            name = match.group("name") or match.group("pyname")
            if name is None:
                raise ValueError(f"unrecognized token: {kind}")
            styles.add("named")
            if not named_params:
                raise ValueError(f"named placeholder ':{name}' requires a parameter mapping")
            if name not in mapping:
                raise ValueError(f"missing value for named parameter '{name}'")
            return emit(mapping[name], ("named", name))

        rewritten = _TOKEN.sub(replace, sql)

        if len(styles) > 1:
            raise ValueError(f"mixed placeholder styles in statement: {', '.join(sorted(styles))}")
        if styles == {"positional"} and sequential_index != len(positional):
            raise ValueError(
                f"statement uses {sequential_index} parameters but {len(positional)} were given"
            )

        return rewritten, args

    # ── 标识符 ────────────────────────────────────────────────

    def quote_identifier(self, name: str) -> str:
        """
        校验并引用标识符（支持 schema.table）

        Raises:
            ValueError: 标识符包含非法字符
        """
        q = self.features.quote_character
        parts = name.split(".")
        for part in parts:
            if not _IDENTIFIER.match(part):
                raise ValueError(f"invalid SQL identifier: {name!r}")
        return ".".join(f"{q}{part}{q}" for part in parts)

    def _placeholder(self, index: int) -> str:
        if self.features.placeholder == "$":
            return f"${index}"
        return self.features.placeholder

    def _columns(self, columns: Union[str, Sequence[str]]) -> str:
        if isinstance(columns, str):
            if columns.strip() == "*":
                return "*"
            columns = [c.strip() for c in columns.split(",")]
        return ", ".join(self.quote_identifier(c) for c in columns)

    def _where(self, where: Optional[Mapping[str, Any]], start: int) -> Tuple[str, List[Any]]:
        if not where:
            return "", []
        conditions = []
        values: List[Any] = []
        for key, value in where.items():
            column = self.quote_identifier(key)
            if value is None:
                conditions.append(f"{column} IS NULL")
            else:
                values.append(value)
                conditions.append(f"{column} = {self._placeholder(start + len(values) - 1)}")
        return " WHERE " + " AND ".join(conditions), values

    def _returning(self, returning: Optional[Union[str, Sequence[str]]]) -> str:
        if not returning or not self.features.supports_returning:
            return ""
        return f" RETURNING {self._columns(returning)}"

    # ── 语句构建 ──────────────────────────────────────────────

    def build_select(
        self,
        table: str,
        where: Optional[Mapping[str, Any]] = None,
        columns: Union[str, Sequence[str]] = "*"
    ) -> Tuple[str, List[Any]]:
        where_sql, values = self._where(where, 1)
        return f"SELECT {self._columns(columns)} FROM {self.quote_identifier(table)}{where_sql}", values

    def build_insert(
        self,
        table: str,
        data: Mapping[str, Any],
        returning: Optional[Union[str, Sequence[str]]] = None
    ) -> Tuple[str, List[Any]]:
        if not data:
            raise ValueError("insert requires at least one column")
        keys = list(data.keys())
        columns = ", ".join(self.quote_identifier(k) for k in keys)
        placeholders = ", ".join(self._placeholder(i + 1) for i in range(len(keys)))
        sql = (
            f"INSERT INTO {self.quote_identifier(table)} ({columns}) "
            f"VALUES ({placeholders}){self._returning(returning)}"
        )
        return sql, list(data.values())

    def build_update(
        self,
        table: str,
        data: Mapping[str, Any],
        where: Mapping[str, Any],
        returning: Optional[Union[str, Sequence[str]]] = None
    ) -> Tuple[str, List[Any]]:
        if not data:
            raise ValueError("update requires at least one column")
        if not where:
            raise ValueError("update requires a where clause")
        keys = list(data.keys())
        set_clause = ", ".join(
            f"{self.quote_identifier(k)} = {self._placeholder(i + 1)}" for i, k in enumerate(keys)
        )
        where_sql, where_values = self._where(where, len(keys) + 1)
        sql = f"UPDATE {self.quote_identifier(table)} SET {set_clause}{where_sql}{self._returning(returning)}"
        return sql, list(data.values()) + where_values

    def build_delete(
        self,
        table: str,
        where: Mapping[str, Any],
        returning: Optional[Union[str, Sequence[str]]] = None
    ) -> Tuple[str, List[Any]]:
        if not where:
            raise ValueError("delete requires a where clause")
        where_sql, values = self._where(where, 1)
        return f"DELETE FROM {self.quote_identifier(table)}{where_sql}{self._returning(returning)}", values

    def build_upsert(
        self,
        table: str,
        data: Mapping[str, Any],
        conflict_columns: Sequence[str],
        update_columns: Optional[Sequence[str]] = None,
        returning: Optional[Union[str, Sequence[str]]] = None
    ) -> Tuple[str, List[Any]]:
        if not conflict_columns:
            raise ValueError("upsert requires conflict columns")
        insert_sql, values = self.build_insert(table, data)
        keys = list(data.keys())
        update_cols = list(update_columns) if update_columns is not None else [
            k for k in keys if k not in conflict_columns
        ]

        if self.dialect == DataDialect.MYSQL:
            if update_cols:
                assignments = ", ".join(
                    f"{self.quote_identifier(c)} = VALUES({self.quote_identifier(c)})" for c in update_cols
                )
            else:
                first = self.quote_identifier(conflict_columns[0])
                assignments = f"{first} = {first}"
            return f"{insert_sql} ON DUPLICATE KEY UPDATE {assignments}", values

        conflict = ", ".join(self.quote_identifier(c) for c in conflict_columns)
        if update_cols:
            assignments = ", ".join(
                f"{self.quote_identifier(c)} = EXCLUDED.{self.quote_identifier(c)}" for c in update_cols
            )
            action = f"DO UPDATE SET {assignments}"
        else:
            action = "DO NOTHING"
        return f"{insert_sql} ON CONFLICT ({conflict}) {action}{self._returning(returning)}", values

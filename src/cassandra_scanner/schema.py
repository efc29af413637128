"""Spark schema derivation for scanned Cassandra tables."""

from pyspark.sql.types import (
    ArrayType, BinaryType, BooleanType, ByteType, DateType, DecimalType, DoubleType,
    FloatType, IntegerType, LongType, MapType, ShortType, StringType, StructField,
    StructType, TimestampType,
)

# CQL type name -> Spark type factory
_SIMPLE_TYPES = {
    "tinyint": ByteType,
    "smallint": ShortType,
    "int": IntegerType,
    "bigint": LongType,
    "counter": LongType,
    "time": LongType,  # nanoseconds since midnight
    "float": FloatType,
    "double": DoubleType,
    "decimal": DecimalType,
    "varint": DecimalType,
    "boolean": BooleanType,
    "timestamp": TimestampType,
    "date": DateType,
    "blob": BinaryType,
}


def _simple_type_name(cassandra_type):
    """Return the CQL name of a driver type class (``Int32Type`` -> ``int``)."""
    typename = getattr(cassandra_type, "typename", None)
    return typename.lower() if isinstance(typename, str) else None


def cassandra_to_spark_type(cassandra_type):
    """
    Convert a Cassandra type to a Spark type.

    Args:
        cassandra_type: cassandra.cqltypes type (class or instance) or a CQL
                        type string such as "int" or "text"

    Returns:
        PySpark DataType. Types without a Spark counterpart (uuid, inet, text
        and anything unknown) map to StringType.
    """
    from cassandra import cqltypes

    if isinstance(cassandra_type, str):
        return _SIMPLE_TYPES.get(cassandra_type.strip().lower(), StringType)()

    if isinstance(cassandra_type, cqltypes.FrozenType) or (
        isinstance(cassandra_type, type) and issubclass(cassandra_type, cqltypes.FrozenType)
    ):
        return cassandra_to_spark_type(cassandra_type.subtypes[0])

    if _is_type(cassandra_type, (cqltypes.ListType, cqltypes.SetType)):
        return ArrayType(cassandra_to_spark_type(cassandra_type.subtypes[0]))

    if _is_type(cassandra_type, cqltypes.MapType):
        key_type, value_type = cassandra_type.subtypes
        return MapType(cassandra_to_spark_type(key_type), cassandra_to_spark_type(value_type))

    if _is_type(cassandra_type, cqltypes.UserType):
        return StructType([
            StructField(name, cassandra_to_spark_type(subtype), nullable=True)
            for name, subtype in zip(cassandra_type.fieldnames, cassandra_type.subtypes)
        ])

    if _is_type(cassandra_type, cqltypes.TupleType):
        return StructType([
            StructField(f"_field{i}", cassandra_to_spark_type(subtype), nullable=True)
            for i, subtype in enumerate(cassandra_type.subtypes)
        ])

    return _SIMPLE_TYPES.get(_simple_type_name(cassandra_type), StringType)()


def _is_type(cassandra_type, classes):
    if isinstance(cassandra_type, type):
        return issubclass(cassandra_type, classes)
    return isinstance(cassandra_type, classes)


def derive_schema_from_table(table_metadata, columns=None):
    """
    Derive a Spark schema from Cassandra table metadata.

    Args:
        table_metadata: Cassandra table metadata object
        columns: Optional list of column names to include (projection),
                 defaults to every column in name order

    Returns:
        StructType with one nullable field per column
    """
    column_names = columns or sorted(table_metadata.columns.keys())

    fields = []
    for col_name in column_names:
        if col_name not in table_metadata.columns:
            raise ValueError(f"Column '{col_name}' not found in table")

        col_meta = table_metadata.columns[col_name]
        fields.append(StructField(col_name, cassandra_to_spark_type(col_meta.cql_type), nullable=True))

    return StructType(fields)

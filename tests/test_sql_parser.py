"""Tests for the SQL schema parser."""

from sketchdb.src.er_model import FOREIGN_KEY, NORMAL, PRIMARY_KEY, TABLE_COLORS
from sketchdb.src.sql_parser import (
    clean_sql,
    extract_default,
    normalize_data_type,
    parse_sql,
    parse_sql_with_warnings,
    smart_split,
)


SHOP_SQL = """
-- shop schema
CREATE TABLE customers (
    id INT PRIMARY KEY,
    email VARCHAR(100) NOT NULL UNIQUE,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

/* orders reference customers */
CREATE TABLE orders (
    id INTEGER IDENTITY(1,1) PRIMARY KEY,
    customer_id INT NOT NULL,
    total DECIMAL(10,2) DEFAULT 0,
    status VARCHAR(20) DEFAULT 'new, pending',
    FOREIGN KEY (customer_id) REFERENCES customers(id)
);
"""


class TestStatementHandling:
    """Statement splitting and classification."""

    def test_parses_tables_in_declaration_order(self):
        tables = parse_sql(SHOP_SQL)
        assert [t.name for t in tables] == ['customers', 'orders']

    def test_malformed_statement_is_skipped(self):
        tables = parse_sql("CREATE TABLE a (id INT); DROP DATABASE x;")
        assert len(tables) == 1
        assert tables[0].name == 'a'

    def test_garbage_input_never_raises(self):
        assert parse_sql("this is not sql at all ;;; ((((") == []
        assert parse_sql("") == []
        assert parse_sql(None) == []

    def test_skipped_statements_are_reported_as_warnings(self):
        tables, warnings = parse_sql_with_warnings("CREATE TABLE a (id INT); DROP DATABASE x;")
        assert len(tables) == 1
        assert any('DROP DATABASE x' in w for w in warnings)

    def test_table_without_columns_still_produces_entry(self):
        tables = parse_sql("CREATE TABLE empty ();")
        assert len(tables) == 1
        assert tables[0].attributes == []

    def test_duplicate_table_names_are_kept(self):
        tables = parse_sql("CREATE TABLE a (id INT); CREATE TABLE a (name TEXT);")
        assert [t.name for t in tables] == ['a', 'a']

    def test_if_not_exists_and_quoted_names(self):
        tables = parse_sql('CREATE TABLE IF NOT EXISTS `users` (`id` INT PRIMARY KEY, "name" TEXT);')
        assert tables[0].name == 'users'
        assert [a.name for a in tables[0].attributes] == ['id', 'name']

    def test_semicolon_inside_string_does_not_split(self):
        tables = parse_sql("CREATE TABLE a (note VARCHAR(20) DEFAULT 'x;y'); CREATE TABLE b (id INT);")
        assert [t.name for t in tables] == ['a', 'b']
        assert tables[0].attributes[0].default_value == "'x;y'"


class TestColumnParsing:
    """Column clauses and their modifiers."""

    def test_column_modifiers(self):
        customers, orders = parse_sql(SHOP_SQL)
        email = customers.get_attribute('email')
        assert email.data_type == 'VARCHAR(255)'
        assert email.is_not_null is True
        assert email.is_unique is True
        assert email.kind == NORMAL

        order_id = orders.get_attribute('id')
        assert order_id.kind == PRIMARY_KEY
        assert order_id.is_auto_increment is True
        assert order_id.data_type == 'INTEGER'

    def test_decimal_size_does_not_split_columns(self):
        _, orders = parse_sql(SHOP_SQL)
        assert [a.name for a in orders.attributes] == ['id', 'customer_id', 'total', 'status']
        assert orders.get_attribute('total').data_type == 'DECIMAL(10,2)'

    def test_defaults_are_kept_verbatim(self):
        customers, orders = parse_sql(SHOP_SQL)
        assert customers.get_attribute('created_at').default_value == 'CURRENT_TIMESTAMP'
        assert orders.get_attribute('total').default_value == '0'
        assert orders.get_attribute('status').default_value == "'new, pending'"

    def test_keywords_inside_default_string_are_ignored(self):
        tables = parse_sql("CREATE TABLE t (label VARCHAR(30) DEFAULT 'NOT NULL UNIQUE');")
        label = tables[0].attributes[0]
        assert label.is_not_null is False
        assert label.is_unique is False

    def test_table_level_primary_key_promotes_columns(self):
        tables = parse_sql("CREATE TABLE t (a INT, b INT, c TEXT, PRIMARY KEY (a, b));")
        kinds = {a.name: a.kind for a in tables[0].attributes}
        assert kinds == {'a': PRIMARY_KEY, 'b': PRIMARY_KEY, 'c': NORMAL}

    def test_table_level_unique_and_ignored_clauses(self):
        tables = parse_sql(
            "CREATE TABLE t (a INT, code VARCHAR(10), UNIQUE (code), KEY idx_a (a), CHECK (a > 0));"
        )
        assert [a.name for a in tables[0].attributes] == ['a', 'code']
        assert tables[0].get_attribute('code').is_unique is True

    def test_column_named_key_is_not_an_index(self):
        tables = parse_sql("CREATE TABLE t (key VARCHAR(10), value TEXT);")
        assert [a.name for a in tables[0].attributes] == ['key', 'value']

    def test_column_check_constraint(self):
        table, = parse_sql(
            "CREATE TABLE t (qty INT DEFAULT 1 CHECK (qty > 0 AND (qty < 100)) NOT NULL, "
            "state VARCHAR(10) CHECK (state IN ('a', 'b)')))"
        )
        qty = table.get_attribute('qty')
        assert qty.check_constraint == 'qty > 0 AND (qty < 100)'
        assert qty.default_value == '1'
        assert qty.is_not_null is True
        assert table.get_attribute('state').check_constraint == "state IN ('a', 'b)')"

    def test_not_null_inside_check_is_not_a_column_flag(self):
        table, = parse_sql("CREATE TABLE t (note TEXT CHECK (note IS NOT NULL OR note <> ''))")
        note = table.get_attribute('note')
        assert note.check_constraint == "note IS NOT NULL OR note <> ''"
        assert note.is_not_null is False


class TestForeignKeys:
    """Pending foreign keys and their resolution."""

    def test_foreign_key_promotion(self):
        a, b = parse_sql("CREATE TABLE a(id INT PRIMARY KEY); CREATE TABLE b(a_id INT REFERENCES a(id));")
        assert a.get_attribute('id').kind == PRIMARY_KEY
        a_id = b.get_attribute('a_id')
        assert a_id.kind == FOREIGN_KEY
        assert (a_id.ref_table, a_id.ref_attr) == ('a', 'id')

    def test_unannotated_reference_target_becomes_primary_key(self):
        a, _ = parse_sql("CREATE TABLE a(code INT); CREATE TABLE b(code INT REFERENCES a(code));")
        assert a.get_attribute('code').kind == PRIMARY_KEY

    def test_table_level_foreign_key(self):
        _, orders = parse_sql(SHOP_SQL)
        fk = orders.get_attribute('customer_id')
        assert fk.kind == FOREIGN_KEY
        assert (fk.ref_table, fk.ref_attr) == ('customers', 'id')

    def test_alter_table_foreign_key(self):
        sql = """
            CREATE TABLE users (id INT PRIMARY KEY);
            CREATE TABLE posts (id INT PRIMARY KEY, author INT);
            ALTER TABLE posts ADD CONSTRAINT fk_author FOREIGN KEY (author) REFERENCES users(id);
        """
        _, posts = parse_sql(sql)
        author = posts.get_attribute('author')
        assert author.kind == FOREIGN_KEY
        assert author.ref_table == 'users'

    def test_forward_reference_resolves(self):
        posts, users = parse_sql(
            "CREATE TABLE posts (author INT REFERENCES users(id)); CREATE TABLE users (id INT);"
        )
        assert posts.get_attribute('author').ref_table == 'users'
        assert users.get_attribute('id').kind == PRIMARY_KEY

    def test_reference_resolution_is_case_insensitive(self):
        _, b = parse_sql("CREATE TABLE Users (id INT); CREATE TABLE b (uid INT REFERENCES users(ID));")
        uid = b.get_attribute('uid')
        assert (uid.ref_table, uid.ref_attr) == ('Users', 'id')

    def test_dangling_foreign_key_is_dropped_with_warning(self):
        tables, warnings = parse_sql_with_warnings("CREATE TABLE b (a_id INT REFERENCES missing(id));")
        assert tables[0].get_attribute('a_id').kind == NORMAL
        assert any("missing" in w for w in warnings)

    def test_referential_actions_are_kept(self):
        sql = """
            CREATE TABLE users (id INT PRIMARY KEY);
            CREATE TABLE posts (
                id INT PRIMARY KEY,
                author INT REFERENCES users(id) ON DELETE SET NULL,
                editor INT,
                reviewer INT,
                FOREIGN KEY (editor) REFERENCES users(id) on update cascade ON DELETE NO  ACTION
            );
            ALTER TABLE posts ADD FOREIGN KEY (reviewer) REFERENCES users(id) ON DELETE RESTRICT;
        """
        _, posts = parse_sql(sql)
        actions = {a.name: (a.on_delete, a.on_update) for a in posts.attributes if a.kind == FOREIGN_KEY}
        assert actions == {
            'author': ('SET NULL', None),
            'editor': ('NO ACTION', 'CASCADE'),
            'reviewer': ('RESTRICT', None),
        }


class TestLayout:
    def test_grid_positions_ids_and_colors(self):
        sql = ";".join(f"CREATE TABLE t{i} (id INT)" for i in range(5))
        tables = parse_sql(sql)
        assert [t.id for t in tables] == [f"table-{i}" for i in range(1, 6)]
        assert tables[0].position == {'x': 100, 'y': 100}
        assert tables[2].position == {'x': 700, 'y': 100}
        assert tables[3].position == {'x': 100, 'y': 300}
        assert tables[1].color == TABLE_COLORS[1]


class TestHelpers:
    def test_clean_sql_strips_comments_and_whitespace(self):
        assert clean_sql("a  -- note\n  b /* x\ny */ c") == "a b c"

    def test_clean_sql_leaves_quoted_text_alone(self):
        assert clean_sql("d DEFAULT 'a--b  /*c*/', -- tail\ne") == "d DEFAULT 'a--b  /*c*/', e"

    def test_smart_split_respects_parentheses(self):
        assert smart_split("a DECIMAL(10,2), b CHECK (x IN (1,2)), c") == [
            'a DECIMAL(10,2)', 'b CHECK (x IN (1,2))', 'c'
        ]

    def test_normalize_data_type(self):
        assert normalize_data_type('nvarchar(50)') == 'VARCHAR(255)'
        assert normalize_data_type('int') == 'INTEGER'
        assert normalize_data_type('bigint') == 'BIGINT'
        assert normalize_data_type('numeric(8, 3)') == 'DECIMAL(10,2)'
        assert normalize_data_type('datetime2') == 'DATETIME'
        assert normalize_data_type('tinyint(1)') == 'INTEGER'
        assert normalize_data_type('bool') == 'BOOLEAN'
        assert normalize_data_type('longtext') == 'TEXT'
        assert normalize_data_type('uuid') == 'VARCHAR(255)'

    def test_extract_default_function_call(self):
        assert extract_default(" DEFAULT now() NOT NULL") == 'now()'
        assert extract_default(" DEFAULT (1 + 2)") == '(1 + 2)'
        assert extract_default(" NOT NULL") is None

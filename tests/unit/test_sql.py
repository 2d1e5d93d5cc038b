"""Tests for SQL statement compilation."""
import pytest
from modelsql.exceptions import ValidationError, ValueConversionError
from modelsql.sql import Statement, compile_delete, compile_insert
from modelsql.sql import compile_select, compile_select_count, compile_update
from modelsql.sql import quote_identifier, quote_literal


class TestQuoting:

    def test_quote_identifier(self):
        assert quote_identifier('user') == '"user"'
        assert quote_identifier('we"ird', 'postgresql') == '"we""ird"'

    def test_quote_identifier_unknown_dialect(self):
        with pytest.raises(ValueError):
            quote_identifier('user', 'oracle')

    @pytest.mark.parametrize(('value', 'expected'), [
        ('alex', "'alex'"),
        ("O'Brien", "'O''Brien'"),
        (5, '5'),
        (2.5, '2.5'),
        (None, 'null'),
    ])
    def test_quote_literal(self, value, expected):
        assert quote_literal(value) == expected

    def test_quote_literal_rejects_other_values(self):
        with pytest.raises(ValueError):
            quote_literal(object())


class TestSelect:

    def test_find_by_id(self, plain_user_model):
        statement = compile_select(plain_user_model, {'id': 1})
        assert statement == Statement('select "user".* from "user" where "user"."id" = 1')

    def test_no_filter(self, plain_user_model):
        assert compile_select(plain_user_model).sql == 'select "user".* from "user"'

    def test_renamed_column(self, user_model):
        statement = compile_select(user_model, {'fullname': 'alex'})
        assert statement.sql == 'select "user".* from "user" where "user"."name" = \'alex\''

    def test_or_mapping(self, plain_user_model):
        statement = compile_select(plain_user_model, {'$or': {'id': 1, 'name': 'jeff'}})
        assert statement.sql == (
            'select "user".* from "user" where "user"."id" = 1 or "user"."name" = \'jeff\''
        )

    def test_nested_groups_are_parenthesized(self, plain_user_model):
        statement = compile_select(plain_user_model, {
            'age': 3,
            '$or': [{'id': 1}, {'name': 'jeff', 'age': 4}],
        })
        assert statement.sql == (
            'select "user".* from "user" where "user"."age" = 3 and '
            '("user"."id" = 1 or ("user"."name" = \'jeff\' and "user"."age" = 4))'
        )

    @pytest.mark.parametrize(('operator', 'sql_operator'), [
        ('$ne', '<>'),
        ('$gt', '>'),
        ('$gte', '>='),
        ('$lt', '<'),
        ('$lte', '<='),
    ])
    def test_comparison(self, plain_user_model, operator, sql_operator):
        statement = compile_select(plain_user_model, {'age': {operator: 18}})
        assert statement.sql == f'select "user".* from "user" where "user"."age" {sql_operator} 18'

    def test_range(self, plain_user_model):
        statement = compile_select(plain_user_model, {'age': {'$gt': 18, '$lt': 65}})
        assert statement.sql.endswith('where "user"."age" > 18 and "user"."age" < 65')

    def test_like(self, plain_user_model):
        statement = compile_select(plain_user_model, {'name': {'$like': 'al%'}})
        assert statement.sql.endswith('where "user"."name" like \'al%\'')

    def test_membership(self, plain_user_model):
        statement = compile_select(plain_user_model, {'id': [1, 2, 3]})
        assert statement.sql.endswith('where "user"."id" in (1, 2, 3)')

    def test_not_in(self, plain_user_model):
        statement = compile_select(plain_user_model, {'id': {'$nin': [1]}})
        assert statement.sql.endswith('where "user"."id" not in (1)')

    def test_empty_membership(self, plain_user_model):
        assert compile_select(plain_user_model, {'id': []}).sql.endswith('where 1 = 0')
        assert compile_select(plain_user_model, {'id': {'$nin': []}}).sql.endswith('where 1 = 1')

    def test_null(self, plain_user_model):
        assert compile_select(plain_user_model, {'name': None}).sql.endswith(
            'where "user"."name" is null')
        assert compile_select(plain_user_model, {'name': {'$ne': None}}).sql.endswith(
            'where "user"."name" is not null')

    def test_null_ordering_comparison(self, plain_user_model):
        with pytest.raises(ValidationError):
            compile_select(plain_user_model, {'age': {'$gt': None}})

    def test_string_literal_is_escaped(self, plain_user_model):
        statement = compile_select(plain_user_model, {'name': "O'Brien"})
        assert statement.sql.endswith("where \"user\".\"name\" = 'O''Brien'")
        assert statement.values == ()

    def test_undeclared_key_passes_through(self, plain_user_model):
        statement = compile_select(plain_user_model, {'tag_id': 5})
        assert statement.sql == 'select "user".* from "user" where "tag_id" = 5'

    def test_invalid_key(self, plain_user_model):
        with pytest.raises(ValidationError):
            compile_select(plain_user_model, {'name; drop table user': 1})

    def test_sort(self, plain_user_model):
        statement = compile_select(plain_user_model, {'sort': ['-age', 'name']})
        assert statement.sql == (
            'select "user".* from "user" order by "user"."age" desc, "user"."name" asc'
        )


class TestBoundValues:
    """Converted types are bound, never inlined."""

    def test_booleans(self, user_model):
        statement = compile_select(user_model, {'active': True, 'email': 'a@b.c'})
        assert statement.sql.endswith('where "user"."active" = ? and "user"."email" = \'a@b.c\'')
        assert statement.values == (1,)

    def test_boolean_false(self, user_model):
        assert compile_select(user_model, {'active': False}).values == (0,)

    def test_date_range(self, user_model):
        statement = compile_select(user_model, {'subscribed_at': {'$gt': '2012', '$lt': '2013-05'}})
        assert statement.sql.endswith(
            'where "user"."subscribed_at" > ? and "user"."subscribed_at" < ?')
        assert statement.values == ('2012-01-01 00:00:00', '2013-05-01 00:00:00')

    def test_integer_date_column(self, user_model):
        statement = compile_select(user_model, {'updated_at': {'$gt': 1388346754}})
        assert statement.sql.endswith('where "user"."updated_at" > ?')
        assert statement.values == (1388346754,)

    def test_uuid(self, uuid_model):
        statement = compile_select(uuid_model, {'id': '110E8400-E29B-11D4-A716-446655440000'})
        assert statement.sql == 'select "image".* from "image" where "image"."id" = ?'
        assert statement.values == (bytes.fromhex('110e8400e29b11d4a716446655440000'),)

    def test_uuid_membership(self, uuid_model):
        ids = ['110e8400-e29b-11d4-a716-446655440000', '210e8400-e29b-11d4-a716-446655440000']
        statement = compile_select(uuid_model, {'id': ids})
        assert statement.sql.endswith('where "image"."id" in (?, ?)')
        assert len(statement.values) == 2

    def test_invalid_date(self, user_model):
        with pytest.raises(ValueConversionError) as exc_info:
            compile_select(user_model, {'subscribed_at': 'banana'})
        assert exc_info.value.attribute == 'subscribed_at'

    def test_postgres_placeholder(self, user_model):
        statement = compile_select(user_model, {'active': True}, dialect='postgresql')
        assert statement.sql.endswith('where "user"."active" = %s')
        assert statement.values == (1,)

    def test_postgres_escapes_percent_in_literals(self, plain_user_model):
        statement = compile_select(plain_user_model, {'name': {'$like': 'al%'}}, dialect='postgresql')
        assert statement.sql.endswith('where "user"."name" like \'al%%\'')

    def test_placeholders_match_values(self, user_model):
        statement = compile_select(user_model, {
            'active': True,
            '$or': {'subscribed_at': {'$gte': '2012'}, 'updated_at': 1388346754},
        })
        assert statement.sql.count('?') == len(statement.values) == 3


class TestPagination:

    def test_limit_offset(self, plain_user_model):
        statement = compile_select(plain_user_model, {'limit': 25, 'offset': 75})
        assert statement.sql == 'select "user".* from "user" limit 25 offset 75'

    def test_page_mode(self, plain_user_model):
        statement = compile_select(plain_user_model, {'page': 4, 'pageSize': 25, 'age': 3})
        assert statement.sql == (
            'select "user".* from "user" where "user"."age" = 3 limit 25 offset 75'
        )

    def test_limit_appears_once(self, plain_user_model):
        sql = compile_select(plain_user_model, {'page': 2, 'pageSize': 10, 'limit': 5}).sql
        assert sql.count('limit') == 1
        assert sql.endswith('limit 10 offset 10')

    def test_count_ignores_pagination(self, plain_user_model):
        statement = compile_select_count(plain_user_model, {'name': 'alex', 'limit': 10, 'page': 2})
        assert statement.sql == 'select COUNT(*) as _count from "user" where "user"."name" = \'alex\''


class TestInsert:

    def test_renamed_column(self, user_model):
        statement = compile_insert(user_model, {'fullname': 'alex'})
        assert statement == Statement('insert into "user" ("name") values (\'alex\')')

    def test_undeclared_keys_are_dropped(self, user_model):
        statement = compile_insert(user_model, {'fullname': 'alex', 'password': 'x'})
        assert statement.sql == 'insert into "user" ("name") values (\'alex\')'

    def test_null_primary_key_is_omitted(self, user_model):
        statement = compile_insert(user_model, {'id': None, 'email': 'a@b.c'})
        assert statement.sql == 'insert into "user" ("email") values (\'a@b.c\')'

    def test_typed_values_are_bound(self, user_model):
        statement = compile_insert(user_model, {'fullname': 'alex', 'active': True,
                                                'subscribed_at': '2013-05-01'})
        assert statement.sql == (
            'insert into "user" ("name", "active", "subscribed_at") values (\'alex\', ?, ?)'
        )
        assert statement.values == (1, '2013-05-01 00:00:00')

    def test_null_value(self, user_model):
        statement = compile_insert(user_model, {'email': None})
        assert statement.sql == 'insert into "user" ("email") values (null)'

    def test_default_values(self, user_model):
        assert compile_insert(user_model, {}).sql == 'insert into "user" default values'

    def test_postgres_returning(self, user_model):
        statement = compile_insert(user_model, {'fullname': '50%'}, dialect='postgresql')
        assert statement.sql == 'insert into "user" ("name") values (\'50%%\') returning "id"'
        assert statement.values == ()


class TestUpdate:

    def test_update(self, plain_user_model):
        statement = compile_update(plain_user_model, 1, {'name': 'jeff'})
        assert statement == Statement('update "user" set "name" = \'jeff\' where "user"."id" = 1')

    def test_renamed_and_typed_columns(self, user_model):
        statement = compile_update(user_model, 7, {'fullname': 'jeff', 'active': False})
        assert statement.sql == (
            'update "user" set "name" = \'jeff\', "active" = ? where "user"."id" = 7'
        )
        assert statement.values == (0,)

    def test_primary_key_is_not_updated(self, plain_user_model):
        statement = compile_update(plain_user_model, 1, {'id': 2, 'name': 'jeff'})
        assert statement.sql == 'update "user" set "name" = \'jeff\' where "user"."id" = 1'

    def test_nothing_to_update(self, plain_user_model):
        assert compile_update(plain_user_model, 1, {}) is None
        assert compile_update(plain_user_model, 1, {'unknown': 3}) is None

    def test_uuid_primary_key_is_bound(self, uuid_model):
        statement = compile_update(uuid_model, '110e8400-e29b-11d4-a716-446655440000',
                                   {'name': 'cat'})
        assert statement.sql == 'update "image" set "name" = \'cat\' where "image"."id" = ?'
        assert statement.values == (bytes.fromhex('110e8400e29b11d4a716446655440000'),)


class TestDelete:

    def test_delete(self, plain_user_model):
        statement = compile_delete(plain_user_model, 1)
        assert statement == Statement('delete from "user" where "user"."id" = 1')

    def test_requires_primary_key(self, plain_user_model):
        with pytest.raises(ValidationError):
            compile_delete(plain_user_model, None)


if __name__ == '__main__':
    __import__('pytest').main([__file__])

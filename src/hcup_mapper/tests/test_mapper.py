"""
Unit tests for mapper module.

Run with: python -m pytest test_mapper.py
"""

import logging

import numpy as np
import pandas as pd
import pytest

from hcup_mapper import CodeMapper, MapOptions, MappingTable, map_codes
from hcup_mapper.exceptions import (
    ColumnNotFound,
    InvalidMapping,
    InvalidOutputFormat,
    OutputColumnConflict,
)


@pytest.fixture
def sample_mapping():
    """Long-form diagnosis mapping with a Y/N default flag"""
    return pd.DataFrame({
        'icd10cm_code': ['E11.9', 'E11.9', 'I10', '001.0'],
        'ccsr_category': ['END002', 'END003', 'CIR007', 'INF001'],
        'is_default': ['Y', 'N', 'Y', 'Y'],
        'ccsr_category_description': [
            'Diabetes mellitus without complication',
            'Diabetes mellitus with complication',
            'Essential hypertension',
            'Cholera',
        ],
    })


@pytest.fixture
def sample_records():
    """Three patients, one code each; Z00.00 has no mapping"""
    return pd.DataFrame({
        'patient_id': [1, 2, 3],
        'dx': ['E11.9', 'I10', 'Z00.00'],
    })


def categories_for(result, code, column='category'):
    return result.loc[result['dx'] == code, column].tolist()


class TestLongFormat:
    """Test cases for long output"""

    def test_cross_classification_fan_out(self, sample_records, sample_mapping):
        """Test E11.9 yields both categories in mapping order"""
        result = map_codes(sample_records, 'dx', sample_mapping)

        assert len(result) == 4
        assert categories_for(result, 'E11.9') == ['END002', 'END003']
        assert categories_for(result, 'I10') == ['CIR007']
        assert result['patient_id'].tolist() == [1, 1, 2, 3]

    def test_unmatched_code_single_null_row(self, sample_records, sample_mapping):
        """Test an unmatched code gives exactly one row with null category"""
        result = map_codes(sample_records, 'dx', sample_mapping)
        unmatched = result[result['dx'] == 'Z00.00']

        assert len(unmatched) == 1
        assert pd.isna(unmatched['category'].iloc[0])
        assert pd.isna(unmatched['description'].iloc[0])

    def test_descriptions_carried(self, sample_records, sample_mapping):
        """Test the description column follows its category"""
        result = map_codes(sample_records, 'dx', sample_mapping)
        row = result[result['category'] == 'CIR007'].iloc[0]
        assert row['description'] == 'Essential hypertension'

    def test_round_trip_identity(self, sample_mapping):
        """Test one entry per code keeps every record once, in order"""
        records = pd.DataFrame({'id': [10, 11], 'dx': ['I10', '001.0']})
        result = map_codes(records, 'dx', sample_mapping)

        assert len(result) == len(records)
        assert result['id'].tolist() == [10, 11]
        assert result['dx'].tolist() == ['I10', '001.0']
        assert result['category'].tolist() == ['CIR007', 'INF001']

    def test_attrs(self, sample_records, sample_mapping):
        """Test output format and family are recorded on the result"""
        result = map_codes(sample_records, 'dx', sample_mapping)
        assert result.attrs['output_format'] == 'long'
        assert result.attrs['family'] == 'diagnosis'

    def test_unmatched_warning(self, sample_records, sample_mapping, caplog):
        """Test the unmatched-code count is logged"""
        with caplog.at_level(logging.WARNING):
            map_codes(sample_records, 'dx', sample_mapping)
        assert "1 of 3 input codes had no CCSR match" in caplog.text

    def test_keep_all_columns_false(self, sample_records, sample_mapping):
        """Test projection to code, category and description"""
        result = map_codes(sample_records, 'dx', sample_mapping, keep_all_columns=False)
        assert list(result.columns) == ['dx', 'category', 'description']

    def test_custom_output_names(self, sample_records, sample_mapping):
        """Test renamed category and description columns"""
        result = map_codes(
            sample_records, 'dx', sample_mapping,
            category_name='ccsr', description_name='ccsr_label'
        )
        assert 'ccsr' in result.columns
        assert 'ccsr_label' in result.columns
        assert 'category' not in result.columns

    def test_mapping_without_description(self, sample_records, sample_mapping):
        """Test no description column appears when the mapping has none"""
        mapping = sample_mapping.drop(columns=['ccsr_category_description'])
        result = map_codes(sample_records, 'dx', mapping)
        assert 'description' not in result.columns


class TestNormalization:
    """Test cases for code normalization on both sides"""

    def test_leading_zeros_preserved(self, sample_mapping):
        """Test '001.0' matches and numeric-looking codes never do"""
        records = pd.DataFrame({'dx': ['001.0', '1.0', '1']})
        result = map_codes(records, 'dx', sample_mapping)

        assert result['dx'].tolist() == ['001.0', '1.0', '1']
        assert result['category'].iloc[0] == 'INF001'
        assert result['category'].iloc[1:].isna().all()

    def test_whitespace_and_quotes_stripped(self, sample_mapping):
        """Test surrounding whitespace and quotes are ignored"""
        records = pd.DataFrame({'dx': [" 'I10' ", '"E11.9"']})
        result = map_codes(records, 'dx', sample_mapping)
        assert result['category'].tolist() == ['CIR007', 'END002', 'END003']

    def test_quoted_mapping_values(self):
        """Test HCUP-style quoted cells in the mapping"""
        mapping = pd.DataFrame({
            'icd10cm_code': ["'I10'"],
            'ccsr_category': ["'CIR007'"],
        })
        result = map_codes(pd.DataFrame({'dx': ['I10']}), 'dx', mapping)
        assert result['category'].tolist() == ['CIR007']

    def test_null_codes_never_match(self):
        """Test null codes on either side do not join"""
        mapping = pd.DataFrame({
            'icd10cm_code': [None, 'I10'],
            'ccsr_category': ['XXX000', 'CIR007'],
        })
        records = pd.DataFrame({'dx': [None, '', 'I10']})
        result = map_codes(records, 'dx', mapping)

        assert len(result) == 3
        assert result['category'].iloc[:2].isna().all()
        assert result['category'].iloc[2] == 'CIR007'


class TestDefaultOnly:
    """Test cases for default-category narrowing"""

    def test_flag_default(self, sample_records, sample_mapping):
        """Test E11.9 narrows to END002"""
        result = map_codes(sample_records, 'dx', sample_mapping, default_only=True)

        assert len(result) == 3
        assert categories_for(result, 'E11.9') == ['END002']
        assert categories_for(result, 'I10') == ['CIR007']

    def test_boolean_flag_default(self, sample_records):
        """Test a real boolean default column"""
        mapping = pd.DataFrame({
            'icd10cm_code': ['E11.9', 'E11.9'],
            'ccsr_category': ['END002', 'END003'],
            'default': [False, True],
        })
        result = map_codes(sample_records, 'dx', mapping, default_only=True)
        assert categories_for(result, 'E11.9') == ['END003']

    def test_code_without_default_gives_null(self, sample_records):
        """Test zero defaults for a code yields a null category row"""
        mapping = pd.DataFrame({
            'icd10cm_code': ['E11.9', 'E11.9', 'I10'],
            'ccsr_category': ['END002', 'END003', 'CIR007'],
            'is_default': ['N', 'N', 'Y'],
        })
        result = map_codes(sample_records, 'dx', mapping, default_only=True)

        e11 = result[result['dx'] == 'E11.9']
        assert len(e11) == 1
        assert pd.isna(e11['category'].iloc[0])

    def test_multiple_defaults_first_wins(self, sample_records, caplog):
        """Test the first of several default rows wins, with a warning"""
        mapping = pd.DataFrame({
            'icd10cm_code': ['E11.9', 'E11.9', 'E11.9'],
            'ccsr_category': ['END003', 'END002', 'END004'],
            'is_default': ['Y', 'Y', 'N'],
        })
        with caplog.at_level(logging.WARNING):
            result = map_codes(sample_records, 'dx', mapping, default_only=True)

        assert categories_for(result, 'E11.9') == ['END003']
        assert "1 codes have more than one default category" in caplog.text

    def test_hcup_default_value_column(self, sample_records):
        """Test a default column holding the category itself"""
        mapping = pd.DataFrame({
            'icd10cm_code': ['E11.9', 'I10'],
            'default_ccsr_category_ip': ['END002', 'CIR007'],
            'ccsr_category_1': ['END003', 'CIR007'],
            'ccsr_category_2': ['END002', None],
        })
        result = map_codes(sample_records, 'dx', mapping, default_only=True)

        assert categories_for(result, 'E11.9') == ['END002']
        assert categories_for(result, 'I10') == ['CIR007']

    def test_procedure_ignores_default_only(self, caplog):
        """Test default_only on procedures warns and keeps all categories"""
        mapping = pd.DataFrame({
            'icd10pcs': ['0016070', '0016070'],
            'prccsr': ['CNS010', 'CNS011'],
        })
        records = pd.DataFrame({'pr': ['0016070']})
        with caplog.at_level(logging.WARNING):
            result = map_codes(records, 'pr', mapping, family='procedure', default_only=True)

        assert result['category'].tolist() == ['CNS010', 'CNS011']
        assert "only exist for diagnosis" in caplog.text

    def test_missing_default_column_warns(self, sample_records, sample_mapping, caplog):
        """Test default_only without a default column warns and continues"""
        mapping = sample_mapping.drop(columns=['is_default'])
        with caplog.at_level(logging.WARNING):
            result = map_codes(sample_records, 'dx', mapping, default_only=True)

        assert categories_for(result, 'E11.9') == ['END002', 'END003']
        assert "No default category column" in caplog.text


class TestWideFormat:
    """Test cases for wide output"""

    def test_scenario(self, sample_records, sample_mapping):
        """Test E11.9 spreads over category_1 and category_2"""
        result = map_codes(sample_records, 'dx', sample_mapping, output_format='wide')

        assert len(result) == 3
        assert list(result.columns) == ['patient_id', 'dx', 'category_1', 'category_2']
        row = result[result['dx'] == 'E11.9'].iloc[0]
        assert row['category_1'] == 'END002'
        assert row['category_2'] == 'END003'
        assert result.attrs['output_format'] == 'wide'

    def test_slot_bound(self, sample_records):
        """Test k_max equals the largest cross-classification count"""
        mapping = pd.DataFrame({
            'icd10cm_code': ['E11.9'] * 3 + ['I10'],
            'ccsr_category': ['END002', 'END003', 'END004', 'CIR007'],
        })
        result = map_codes(sample_records, 'dx', mapping, output_format='wide')
        slots = [c for c in result.columns if c.startswith('category_')]

        assert slots == ['category_1', 'category_2', 'category_3']
        assert result[slots].notna().sum(axis=1).tolist() == [3, 1, 0]

    def test_unmatched_padded(self, sample_records, sample_mapping):
        """Test records with fewer categories are null-padded"""
        result = map_codes(sample_records, 'dx', sample_mapping, output_format='wide')
        row = result[result['dx'] == 'Z00.00'].iloc[0]
        assert pd.isna(row['category_1'])
        assert pd.isna(row['category_2'])

    def test_no_matches_still_one_slot(self, sample_mapping):
        """Test at least one slot exists"""
        records = pd.DataFrame({'dx': ['Z00.00']})
        result = map_codes(records, 'dx', sample_mapping, output_format='wide')
        assert list(result.columns) == ['dx', 'category_1']

    def test_duplicate_records_kept_apart(self, sample_mapping):
        """Test identical input rows stay separate records"""
        records = pd.DataFrame({'dx': ['I10', 'I10']})
        result = map_codes(records, 'dx', sample_mapping, output_format='wide')
        assert result['category_1'].tolist() == ['CIR007', 'CIR007']

    def test_keep_wide_description(self, sample_records, sample_mapping):
        """Test the first description is kept on request"""
        result = map_codes(
            sample_records, 'dx', sample_mapping,
            output_format='wide', keep_wide_description=True
        )
        row = result[result['dx'] == 'E11.9'].iloc[0]
        assert row['description'] == 'Diabetes mellitus without complication'

    def test_wide_with_default_only_is_long(self, sample_records, sample_mapping):
        """Test wide is skipped when default_only is set"""
        result = map_codes(
            sample_records, 'dx', sample_mapping,
            output_format='wide', default_only=True
        )
        assert 'category' in result.columns
        assert result.attrs['output_format'] == 'long'

    def test_wide_procedure_is_long(self):
        """Test wide is skipped for procedure mappings"""
        mapping = pd.DataFrame({'icd10pcs': ['0016070'], 'prccsr': ['CNS010']})
        records = pd.DataFrame({'pr': ['0016070']})
        result = map_codes(records, 'pr', mapping, family='pr', output_format='wide')
        assert result.attrs['output_format'] == 'long'
        assert result['category'].tolist() == ['CNS010']

    def test_wide_projection(self, sample_records, sample_mapping):
        """Test keep_all_columns=False keeps every slot"""
        result = map_codes(
            sample_records, 'dx', sample_mapping,
            output_format='wide', keep_all_columns=False
        )
        assert list(result.columns) == ['dx', 'category_1', 'category_2']

    def test_record_column_named_group(self, sample_mapping):
        """Test a records column called _group is carried through"""
        records = pd.DataFrame({'_group': ['a', 'b'], 'dx': ['E11.9', 'E11.9']})
        result = map_codes(records, 'dx', sample_mapping, output_format='wide')

        assert list(result.columns) == ['_group', 'dx', 'category_1', 'category_2']
        assert result['_group'].tolist() == ['a', 'b']
        assert result['category_2'].tolist() == ['END003', 'END003']

    def test_list_cells(self, sample_mapping):
        """Test records holding lists can be widened"""
        records = pd.DataFrame({'notes': [['a'], ['b']], 'dx': ['E11.9', 'I10']})
        result = map_codes(records, 'dx', sample_mapping, output_format='wide')

        assert result['notes'].tolist() == [['a'], ['b']]
        assert result['category_1'].tolist() == ['END002', 'CIR007']


class TestValidation:
    """Test cases for argument errors"""

    def test_missing_code_column(self, sample_records, sample_mapping):
        """Test ColumnNotFound with role user_code"""
        with pytest.raises(ColumnNotFound) as excinfo:
            map_codes(sample_records, 'icd', sample_mapping)
        assert excinfo.value.role == 'user_code'

    def test_invalid_mapping(self, sample_records):
        """Test non-table mappings are rejected"""
        with pytest.raises(InvalidMapping):
            map_codes(sample_records, 'dx', {'E11.9': 'END002'})

    def test_invalid_output_format(self, sample_records, sample_mapping):
        """Test unknown output formats are rejected"""
        with pytest.raises(InvalidOutputFormat):
            map_codes(sample_records, 'dx', sample_mapping, output_format='tall')

    def test_output_name_collision(self, sample_mapping):
        """Test a records column named like an output column"""
        records = pd.DataFrame({'dx': ['I10'], 'category': ['x']})
        with pytest.raises(OutputColumnConflict):
            map_codes(records, 'dx', sample_mapping)

    def test_slot_name_collision_in_wide(self, sample_mapping):
        """Test a records column named like a wide slot is refused"""
        records = pd.DataFrame({'category_1': ['keep'], 'dx': ['E11.9']})
        with pytest.raises(OutputColumnConflict) as excinfo:
            map_codes(records, 'dx', sample_mapping, output_format='wide')
        assert 'category_1' in str(excinfo.value)

    def test_slot_name_allowed_in_long(self, sample_mapping):
        """Test the same column is kept in long output"""
        records = pd.DataFrame({'category_1': ['keep'], 'dx': ['E11.9']})
        result = map_codes(records, 'dx', sample_mapping)
        assert result['category_1'].tolist() == ['keep', 'keep']

    def test_collision_is_not_a_mapping_error(self, sample_mapping):
        """Test records-side conflicts are distinct from unusable mappings"""
        records = pd.DataFrame({'dx': ['I10'], 'category': ['x']})
        with pytest.raises(ValueError) as excinfo:
            map_codes(records, 'dx', sample_mapping)
        assert not isinstance(excinfo.value, InvalidMapping)

    def test_unrecognized_mapping_columns(self, sample_records):
        """Test mandatory mapping roles must be identifiable"""
        mapping = pd.DataFrame({'foo': ['I10'], 'bar': ['CIR007']})
        with pytest.raises(ColumnNotFound) as excinfo:
            map_codes(sample_records, 'dx', mapping, family='dx')
        assert excinfo.value.role == 'code'

    def test_unknown_option(self, sample_records, sample_mapping):
        """Test misspelled options fail loudly"""
        with pytest.raises(TypeError):
            map_codes(sample_records, 'dx', sample_mapping, outputformat='wide')


class TestInputs:
    """Test cases for accepted input shapes"""

    def test_list_of_dicts(self, sample_mapping):
        """Test list-of-dict records"""
        records = [{'dx': 'I10', 'visit': 'a'}, {'dx': 'E11.9', 'visit': 'b'}]
        result = map_codes(records, 'dx', sample_mapping)
        assert result['visit'].tolist() == ['a', 'b', 'b']

    def test_empty_records(self, sample_mapping):
        """Test empty input gives empty output"""
        result = map_codes(pd.DataFrame({'dx': pd.Series(dtype=object)}), 'dx', sample_mapping)
        assert len(result) == 0
        assert 'category' in result.columns

        assert len(map_codes([], 'dx', sample_mapping)) == 0

    def test_options_object_with_override(self, sample_records, sample_mapping):
        """Test keyword arguments override a MapOptions instance"""
        options = MapOptions(output_format='wide', keep_all_columns=False)
        result = map_codes(sample_records, 'dx', sample_mapping, options, output_format='long')
        assert list(result.columns) == ['dx', 'category', 'description']

    def test_mapping_table_family_used(self):
        """Test a MappingTable's family tag replaces inference"""
        frame = pd.DataFrame({'code': ['0016070'], 'category': ['CNS010']})
        table = MappingTable(frame, family='procedure')
        result = map_codes(pd.DataFrame({'pr': ['0016070']}), 'pr', table)
        assert result.attrs['family'] == 'procedure'
        assert result['category'].tolist() == ['CNS010']

    def test_records_not_modified(self, sample_records, sample_mapping):
        """Test the caller's DataFrame is left untouched"""
        before = sample_records.copy()
        map_codes(sample_records, 'dx', sample_mapping)
        pd.testing.assert_frame_equal(sample_records, before)


class TestCodeMapper:
    """Test cases for the CodeMapper wrapper"""

    def test_from_dataframe(self, sample_mapping):
        """Test construction and length"""
        mapper = CodeMapper.from_dataframe(sample_mapping, family='dx', name='TestMapper')
        assert len(mapper) == 4
        assert mapper.name == 'TestMapper'
        assert 'diagnosis' in repr(mapper)

    def test_statistics(self, sample_records, sample_mapping):
        """Test match statistics accumulate and reset"""
        mapper = CodeMapper.from_dataframe(sample_mapping)
        mapper.map(sample_records, 'dx')

        stats = mapper.get_stats()
        assert stats['records'] == 3
        assert stats['matched'] == 2
        assert stats['unmatched'] == 1
        assert stats['match_rate'] == pytest.approx(2 / 3)

        mapper.reset_stats()
        assert mapper.get_stats()['records'] == 0

    def test_roles(self, sample_mapping):
        """Test resolved column roles"""
        roles = CodeMapper.from_dataframe(sample_mapping).roles(family='dx')
        assert roles.code == 'icd10cm_code'
        assert roles.category == 'ccsr_category'
        assert roles.default == 'is_default'
        assert roles.description == 'ccsr_category_description'

    def test_nan_category_values_stay_null(self, sample_records):
        """Test null categories in the mapping stay null"""
        mapping = pd.DataFrame({
            'icd10cm_code': ['I10'],
            'ccsr_category': [np.nan],
        })
        result = CodeMapper(mapping).map(sample_records, 'dx')
        assert result['category'].isna().all()


class TestMappingTable:
    """Test cases for MappingTable"""

    def test_from_records(self):
        """Test construction from row dicts"""
        table = MappingTable.from_records(
            [{'code': 'I10', 'category': 'CIR007'}], family='dx'
        )
        assert table.family.value == 'diagnosis'
        assert len(table) == 1
        assert list(table.columns) == ['code', 'category']

    def test_family_alias_parsed(self):
        """Test family aliases are normalized"""
        table = MappingTable(pd.DataFrame({'code': []}), family='pr')
        assert table.family.value == 'procedure'

    def test_rejects_non_frame(self):
        """Test only DataFrames are accepted"""
        with pytest.raises(InvalidMapping):
            MappingTable([{'code': 'I10'}])


def test_hcup_default_description_follows_default(sample_records):
    """Test the default's own description replaces the slot-1 description"""
    mapping = pd.DataFrame({
        'icd10cm_code': ['E11.9'],
        'default_ccsr_category_ip': ['END002'],
        'default_ccsr_category_description_ip': ['Diabetes mellitus without complication'],
        'ccsr_category_1': ['END003'],
        'ccsr_category_1_description': ['Diabetes mellitus with complication'],
    })
    long_result = map_codes(sample_records, 'dx', mapping)
    assert categories_for(long_result, 'E11.9', 'description') == [
        'Diabetes mellitus with complication'
    ]

    default_result = map_codes(sample_records, 'dx', mapping, default_only=True)
    assert categories_for(default_result, 'E11.9') == ['END002']
    assert categories_for(default_result, 'E11.9', 'description') == [
        'Diabetes mellitus without complication'
    ]
